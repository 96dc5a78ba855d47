"""
Upload storage and post-upload media optimization.

Uploads are written to disk as-is so the admin request can return immediately;
`optimize_property_media` then runs as a background task, transcodes the files
(Pillow for images, ffmpeg for video) and swaps the raw URLs on the property for
the optimized ones.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import secrets
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass, field

from fastapi import HTTPException, UploadFile
from PIL import Image, ImageOps
from sqlalchemy import select

from estates.config import ffmpeg_binary, max_upload_bytes, media_max_workers, uploads_dir
from estates.db import session_scope
from estates.models import Property
from estates.utils.cloudinary_storage import cloudinary_enabled, destroy_url, is_cloudinary_url, upload_file

logger = logging.getLogger(__name__)

MAX_IMAGE_DIM = 1920  # px, longest side
WEBP_QUALITY = 75
VIDEO_HEIGHT = 720
VIDEO_CRF = 28
VIDEO_TIMEOUT_SECONDS = 15 * 60

IMAGE_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp"}
VIDEO_TYPES = {"video/mp4": ".mp4"}
MODEL_TYPES = {"model/gltf-binary": ".glb", "model/gltf+json": ".gltf"}
MAP3D_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".mp4", ".glb", ".gltf"}

# form field -> (max files, allowed content types)
UPLOAD_FIELDS: dict[str, tuple[int, dict[str, str]]] = {
    "map3dFile": (1, {**IMAGE_TYPES, **VIDEO_TYPES, **MODEL_TYPES}),
    "virtualTourFile": (1, VIDEO_TYPES),
    "images": (10, IMAGE_TYPES),
    "videos": (10, VIDEO_TYPES),
}

_CHUNK = 1024 * 1024

# Caps concurrent transcodes; background tasks beyond this wait their turn.
_transcode_slots = threading.BoundedSemaphore(media_max_workers())

mimetypes.add_type("model/gltf-binary", ".glb")
mimetypes.add_type("model/gltf+json", ".gltf")


@dataclass
class SavedMedia:
    images: list[str] = field(default_factory=list)
    videos: list[str] = field(default_factory=list)
    virtual_tour: str = ""
    map3d: str = ""

    def all_paths(self) -> list[str]:
        return [p for p in (self.images + self.videos + [self.virtual_tour, self.map3d]) if p]

    def __bool__(self) -> bool:
        return bool(self.all_paths())


def _uploads_root() -> str:
    root = os.path.abspath(uploads_dir())
    os.makedirs(root, exist_ok=True)
    return root


def public_url(path: str) -> str:
    return f"/uploads/{os.path.basename(path)}"


def local_path(url: str) -> str | None:
    """Map an /uploads/<name> URL back to its file, refusing anything outside the uploads dir."""
    if not (url or "").startswith("/uploads/"):
        return None
    name = url[len("/uploads/") :]
    if not name or "/" in name or "\\" in name or name in {".", ".."}:
        return None
    return os.path.join(_uploads_root(), name)


def _content_type(upload: UploadFile) -> str:
    ct = (upload.content_type or "").lower().strip()
    if not ct or ct == "application/octet-stream":
        ct = (mimetypes.guess_type(upload.filename or "")[0] or ct).lower()
    return ct


def _unique_name(field_name: str, ext: str) -> str:
    return f"{field_name}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"


def _write_upload(upload: UploadFile, dest: str, *, max_bytes: int) -> int:
    size = 0
    with open(dest, "wb") as out:
        while True:
            chunk = upload.file.read(_CHUNK)
            if not chunk:
                break
            size += len(chunk)
            if size > max_bytes:
                raise HTTPException(status_code=413, detail=f"Upload too large (max {max_bytes // (1024 * 1024)} MB)")
            out.write(chunk)
    return size


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Failed to delete file: %s", path, exc_info=True)


def validate_uploads(files: dict[str, list[UploadFile]]) -> None:
    for field_name, uploads in files.items():
        if field_name not in UPLOAD_FIELDS:
            continue
        max_count, allowed = UPLOAD_FIELDS[field_name]
        real = [u for u in uploads if u is not None and (u.filename or "").strip()]
        if len(real) > max_count:
            raise HTTPException(status_code=400, detail=f"Too many files for {field_name} (max {max_count})")
        for u in real:
            if _content_type(u) not in allowed:
                raise HTTPException(status_code=400, detail="Invalid file type")


def save_uploads(files: dict[str, list[UploadFile]]) -> SavedMedia:
    """
    Persist raw uploads under UPLOADS_DIR. Nothing is transcoded here.
    All-or-nothing: if any file is rejected, files written so far are removed.
    """
    validate_uploads(files)
    root = _uploads_root()
    max_bytes = max_upload_bytes()
    saved = SavedMedia()
    written: list[str] = []
    try:
        for field_name, (_, allowed) in UPLOAD_FIELDS.items():
            for upload in files.get(field_name) or []:
                if upload is None or not (upload.filename or "").strip():
                    continue
                ext = allowed[_content_type(upload)]
                if field_name == "map3dFile":
                    # Unknown extensions fall back to the content type's.
                    original = os.path.splitext(upload.filename or "")[1].lower()
                    if original in MAP3D_EXTENSIONS:
                        ext = original
                dest = os.path.join(root, _unique_name(field_name, ext))
                written.append(dest)
                _write_upload(upload, dest, max_bytes=max_bytes)
                if field_name == "images":
                    saved.images.append(dest)
                elif field_name == "videos":
                    saved.videos.append(dest)
                elif field_name == "virtualTourFile":
                    saved.virtual_tour = dest
                else:
                    saved.map3d = dest
    except Exception:
        for path in written:
            _remove(path)
        raise
    return saved


def raw_urls(saved: SavedMedia) -> dict:
    return {
        "image_urls": [public_url(p) for p in saved.images],
        "video_urls": [public_url(p) for p in saved.videos],
        "virtual_tour_url": public_url(saved.virtual_tour) if saved.virtual_tour else "",
        "map3d_url": public_url(saved.map3d) if saved.map3d else "",
    }


def _optimized_path(path: str, ext: str) -> str:
    stem = os.path.splitext(path)[0]
    return f"{stem}-opt{ext}"


def optimize_image(path: str) -> str:
    """
    Re-encode as WebP, at most MAX_IMAGE_DIM on the longest side (never upscaled).
    Returns the new path, or the original path if anything goes wrong.
    The original is left in place.
    """
    out = _optimized_path(path, ".webp")
    try:
        with Image.open(path) as src:
            img = ImageOps.exif_transpose(src)
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
            img.thumbnail((MAX_IMAGE_DIM, MAX_IMAGE_DIM), Image.LANCZOS)
            img.save(out, format="WEBP", quality=WEBP_QUALITY, method=4)
    except Exception:
        logger.exception("Image optimization failed for %s", path)
        _remove(out)
        return path
    return out


def optimize_video(path: str) -> str:
    """
    Transcode to H.264 at 720p, CRF 28, faststart, no audio.
    Returns the new path, or the original path when ffmpeg is missing or fails.
    The original is left in place.
    """
    ffmpeg = shutil.which(ffmpeg_binary())
    if not ffmpeg:
        logger.warning("ffmpeg not found; keeping original video %s", path)
        return path
    out = _optimized_path(path, ".mp4")
    cmd = [
        ffmpeg,
        "-y",
        "-i",
        path,
        "-c:v",
        "libx264",
        "-vf",
        f"scale=-2:{VIDEO_HEIGHT}",
        "-crf",
        str(VIDEO_CRF),
        "-preset",
        "veryfast",
        "-movflags",
        "+faststart",
        "-an",
        out,
    ]
    try:
        subprocess.run(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            check=True,
            timeout=VIDEO_TIMEOUT_SECONDS,
        )
    except subprocess.CalledProcessError as e:
        logger.error("Video optimization failed for %s: %s", path, (e.stderr or b"")[-500:].decode("utf-8", "replace"))
        _remove(out)
        return path
    except (subprocess.TimeoutExpired, OSError):
        logger.exception("Video optimization failed for %s", path)
        _remove(out)
        return path
    return out


def _transcode(fn, path: str) -> str:
    with _transcode_slots:
        return fn(path)


def _publish(path: str, resource_type: str) -> str:
    """Return the public URL for a finished file, pushing it to Cloudinary when configured."""
    if cloudinary_enabled():
        public_id = os.path.splitext(os.path.basename(path))[0]
        try:
            url, _ = upload_file(path=path, resource_type=resource_type, public_id=public_id)
        except Exception:
            logger.exception("Cloudinary upload failed for %s; serving from local uploads", path)
            url = ""
        if url:
            return url
    return public_url(path)


def _swap(values: list[str], replacements: dict[str, str]) -> list[str]:
    return [replacements.get(v, v) for v in values]


# (raw upload path, output path, published URL) for one finished file
Finished = tuple[str, str, str]


def _optimize_all(saved: SavedMedia, done: list[Finished]) -> None:
    jobs = [(path, optimize_image, "image") for path in saved.images]
    jobs += [(path, optimize_video, "video") for path in saved.videos]
    if saved.virtual_tour:
        jobs.append((saved.virtual_tour, optimize_video, "video"))
    for path, fn, resource_type in jobs:
        out = _transcode(fn, path)
        done.append((path, out, _publish(out, resource_type)))
    if saved.map3d:
        # 3D assets are kept as uploaded.
        done.append((saved.map3d, saved.map3d, _publish(saved.map3d, "raw")))


def _superseded(done: list[Finished]) -> list[str]:
    """Local files no longer referenced once the published URLs are stored."""
    stale: list[str] = []
    for raw, out, url in done:
        for path in (raw, out):
            if url != public_url(path) and path not in stale:
                stale.append(path)
    return stale


def _discard_outputs(done: list[Finished]) -> None:
    for raw, out, url in done:
        if out != raw:
            _remove(out)
        if url != public_url(out):
            delete_media_urls([url])


def _mark_failed(property_id: int) -> None:
    with session_scope() as db:
        p = db.get(Property, int(property_id))
        if p is not None:
            p.media_status = "failed"


def optimize_property_media(property_id: int, saved: SavedMedia) -> None:
    """
    Background task: optimize freshly uploaded media for one property and
    replace the raw URLs stored on it.

    Whatever finished before a failure is still swapped in, and the property
    is marked `failed`. Raw uploads are removed only after the swap commits.
    """
    if not saved:
        return
    started = time.monotonic()
    done: list[Finished] = []
    status = "ready"
    try:
        _optimize_all(saved, done)
    except Exception:
        logger.exception("Media optimization failed for property %s", property_id)
        status = "failed"

    replacements = {public_url(raw): url for raw, _, url in done}
    try:
        with session_scope() as db:
            p = db.execute(select(Property).where(Property.id == int(property_id)).with_for_update()).scalar_one_or_none()
            if p is None:
                logger.info("Property %s deleted before media finished; discarding optimized files", property_id)
                _discard_outputs(done)
                for path in saved.all_paths():
                    _remove(path)
                return
            p.image_urls = _swap(p.image_urls, replacements)
            p.video_urls = _swap(p.video_urls, replacements)
            p.virtual_tour_url = replacements.get(p.virtual_tour_url, p.virtual_tour_url)
            p.map3d_url = replacements.get(p.map3d_url, p.map3d_url)
            p.media_status = status
    except Exception:
        logger.exception("Storing optimized media failed for property %s", property_id)
        # The raw uploads are still referenced and still on disk.
        _discard_outputs(done)
        _mark_failed(property_id)
        return

    for path in _superseded(done):
        _remove(path)
    logger.info(
        "Optimized %s media file(s) for property %s in %.1fs (%s)",
        len(done),
        property_id,
        time.monotonic() - started,
        status,
    )


def delete_media_urls(urls: list[str]) -> None:
    """Best-effort removal of local uploads and Cloudinary assets."""
    for url in urls:
        if not url:
            continue
        path = local_path(url)
        if path:
            _remove(path)
        elif is_cloudinary_url(url):
            destroy_url(url)
