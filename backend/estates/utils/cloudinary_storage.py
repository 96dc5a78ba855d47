from __future__ import annotations

import logging
import os
import re
from typing import Literal

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

logger = logging.getLogger(__name__)

ResourceType = Literal["image", "video", "raw"]

_ENV_KEYS = ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET")

_DELIVERY_RE = re.compile(r"/(image|video|raw)/upload/(?:v\d+/)?(.+)$")


def _cloudinary_folder() -> str:
    return (os.getenv("CLOUDINARY_FOLDER") or "gs-infra").strip() or "gs-infra"


def cloudinary_enabled() -> bool:
    """Remote media storage is optional; it turns on when all three credentials are set."""
    return all((os.getenv(k) or "").strip() for k in _ENV_KEYS)


def _configure() -> None:
    cloudinary.config(
        cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
        api_key=os.getenv("CLOUDINARY_API_KEY"),
        api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        secure=True,
    )


def is_cloudinary_url(url: str) -> bool:
    return "res.cloudinary.com/" in (url or "")


def parse_delivery_url(url: str) -> tuple[ResourceType, str] | None:
    """
    Recover (resource_type, public_id) from a delivery URL such as
    https://res.cloudinary.com/<cloud>/image/upload/v17/gs-infra/images-1-2-opt.webp
    """
    m = _DELIVERY_RE.search((url or "").split("?", 1)[0])
    if not m:
        return None
    resource_type = m.group(1)
    public_id = m.group(2)
    if resource_type != "raw":
        # Raw assets keep their extension as part of the public_id.
        public_id = os.path.splitext(public_id)[0]
    return resource_type, public_id  # type: ignore[return-value]


def upload_file(*, path: str, resource_type: ResourceType, public_id: str) -> tuple[str, str]:
    """
    Upload a local file. Returns (secure_url, public_id), or ("", "") when the
    upload didn't produce a usable asset.
    """
    if not path or not os.path.exists(path):
        return "", ""

    _configure()
    res = cloudinary.uploader.upload(
        path,
        resource_type=resource_type,
        folder=_cloudinary_folder(),
        public_id=public_id,
        overwrite=False,
        type="upload",
        invalidate=False,
    )

    url = str(res.get("secure_url") or "").strip()
    pid = str(res.get("public_id") or "").strip()
    if not url or not pid:
        return "", ""
    return url, pid


def destroy_url(url: str) -> None:
    parsed = parse_delivery_url(url)
    if not parsed:
        return
    resource_type, public_id = parsed
    _configure()
    try:
        cloudinary.uploader.destroy(public_id, resource_type=resource_type, invalidate=False)
    except CloudinaryError:
        logger.warning("Cloudinary destroy failed public_id=%s", public_id, exc_info=True)
