from __future__ import annotations

import io
import os
import subprocess
import threading
import time

import pytest
from fastapi import HTTPException
from PIL import Image
from starlette.datastructures import Headers, UploadFile

from conftest import png_bytes, uploads_dir
from estates import media
from estates.db import session_scope
from estates.models import Property


def _upload(name: str, data: bytes, content_type: str) -> UploadFile:
    return UploadFile(io.BytesIO(data), filename=name, headers=Headers({"content-type": content_type}))


@pytest.fixture
def image_file(tmp_path):
    def _make(size, fmt="PNG", name="photo.png"):
        path = tmp_path / name
        Image.new("RGB", size, "blue").save(path, format=fmt)
        return str(path)

    return _make


def test_optimize_image_downscales_to_webp(image_file):
    src = image_file((4000, 2000))
    out = media.optimize_image(src)
    assert out.endswith("photo-opt.webp")
    with Image.open(out) as img:
        assert img.format == "WEBP"
        assert img.size == (1920, 960)
    # The raw upload is removed by the pipeline once the new URL is stored.
    assert os.path.exists(src)


def test_optimize_image_never_upscales(image_file):
    out = media.optimize_image(image_file((320, 200), fmt="JPEG", name="small.jpg"))
    with Image.open(out) as img:
        assert img.size == (320, 200)


def test_optimize_image_keeps_original_on_failure(tmp_path):
    bogus = tmp_path / "broken.png"
    bogus.write_bytes(b"not an image")
    assert media.optimize_image(str(bogus)) == str(bogus)
    assert bogus.exists()
    assert not (tmp_path / "broken-opt.webp").exists()


def test_optimize_video_without_ffmpeg(monkeypatch, tmp_path):
    monkeypatch.setattr(media.shutil, "which", lambda name: None)
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"\x00")
    assert media.optimize_video(str(clip)) == str(clip)


def test_optimize_video_command(monkeypatch, tmp_path):
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"\x00")
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        with open(cmd[-1], "wb") as out:
            out.write(b"transcoded")
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr(media.shutil, "which", lambda name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(media.subprocess, "run", fake_run)
    out = media.optimize_video(str(clip))

    assert out == str(tmp_path / "clip-opt.mp4")
    assert clip.exists()
    cmd = calls[0]
    assert cmd[0] == "/usr/bin/ffmpeg"
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-vf") + 1] == "scale=-2:720"
    assert cmd[cmd.index("-crf") + 1] == "28"
    assert cmd[cmd.index("-movflags") + 1] == "+faststart"
    assert "-an" in cmd


def test_optimize_video_failure_keeps_original(monkeypatch, tmp_path):
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"\x00")

    def failing_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr=b"moov atom not found")

    monkeypatch.setattr(media.shutil, "which", lambda name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(media.subprocess, "run", failing_run)
    assert media.optimize_video(str(clip)) == str(clip)
    assert clip.exists()


def test_validate_uploads():
    media.validate_uploads({"images": [_upload("a.png", b"x", "image/png")]})
    # Unknown fields are ignored.
    media.validate_uploads({"avatar": [_upload("a.exe", b"x", "application/octet-stream")]})

    with pytest.raises(HTTPException) as exc:
        media.validate_uploads({"virtualTourFile": [_upload("a.gif", b"x", "image/gif")]})
    assert exc.value.status_code == 400

    too_many = [_upload(f"{i}.png", b"x", "image/png") for i in range(11)]
    with pytest.raises(HTTPException) as exc:
        media.validate_uploads({"images": too_many})
    assert exc.value.detail == "Too many files for images (max 10)"


def test_content_type_falls_back_to_extension():
    media.validate_uploads({"map3dFile": [_upload("site.glb", b"glTF", "application/octet-stream")]})


def test_save_uploads_names_and_urls():
    saved = media.save_uploads(
        {
            "images": [_upload("front.png", png_bytes(), "image/png")],
            "map3dFile": [_upload("Site.GLB", b"glTF", "model/gltf-binary")],
        }
    )
    assert len(saved.images) == 1
    urls = media.raw_urls(saved)
    assert urls["image_urls"][0].startswith("/uploads/images-")
    assert urls["image_urls"][0].endswith(".png")
    assert urls["map3d_url"].endswith(".glb")
    assert urls["virtual_tour_url"] == ""
    for path in saved.all_paths():
        assert os.path.dirname(path) == os.path.abspath(uploads_dir())


def test_save_uploads_enforces_size_limit(monkeypatch):
    monkeypatch.setattr(media, "max_upload_bytes", lambda: 10)
    uploads_dir().mkdir(parents=True, exist_ok=True)
    before = set(uploads_dir().iterdir())
    with pytest.raises(HTTPException) as exc:
        media.save_uploads({"videos": [_upload("big.mp4", b"\x00" * 64, "video/mp4")]})
    assert exc.value.status_code == 413
    assert set(uploads_dir().iterdir()) == before


@pytest.mark.parametrize(
    "url",
    ["/uploads/../secret.txt", "/uploads/a/b.png", "/uploads/", "/static/x.png", "https://cdn.example.com/x.png", ""],
)
def test_local_path_rejects_outside_uploads(url):
    assert media.local_path(url) is None


def test_local_path_maps_into_uploads_dir():
    path = media.local_path("/uploads/images-1.webp")
    assert path.endswith("images-1.webp")


def test_delete_media_urls(monkeypatch):
    uploads_dir().mkdir(parents=True, exist_ok=True)
    target = uploads_dir() / "images-gone.webp"
    target.write_bytes(b"x")
    destroyed = []
    monkeypatch.setattr(media, "destroy_url", destroyed.append)

    media.delete_media_urls(
        ["/uploads/images-gone.webp", "", "/uploads/missing.webp", "https://res.cloudinary.com/demo/image/upload/v1/a.webp"]
    )
    assert not target.exists()
    assert destroyed == ["https://res.cloudinary.com/demo/image/upload/v1/a.webp"]


def test_optimize_property_media_for_deleted_property_cleans_up(image_file):
    uploads_dir().mkdir(parents=True, exist_ok=True)
    raw = uploads_dir() / "images-orphan.png"
    Image.new("RGB", (10, 10)).save(raw, format="PNG")
    media.optimize_property_media(12345, media.SavedMedia(images=[str(raw)]))
    assert not raw.exists()
    assert not (uploads_dir() / "images-orphan-opt.webp").exists()


def test_map3d_keeps_only_known_extensions():
    saved = media.save_uploads({"map3dFile": [_upload("evil.html", b"<script>alert(1)</script>", "image/png")]})
    assert saved.map3d.endswith(".png")
    saved = media.save_uploads({"map3dFile": [_upload("Site.GLTF", b"{}", "model/gltf+json")]})
    assert saved.map3d.endswith(".gltf")


def _raw_image(name: str) -> str:
    uploads_dir().mkdir(parents=True, exist_ok=True)
    path = uploads_dir() / name
    Image.new("RGB", (40, 30), "green").save(path, format="PNG")
    return os.path.abspath(path)


def test_failed_step_keeps_finished_swaps(make_property, monkeypatch):
    image = _raw_image("images-partial.png")
    video = os.path.join(os.path.dirname(image), "videos-partial.mp4")
    with open(video, "wb") as f:
        f.write(b"\x00")
    p = make_property(
        image_urls=["/uploads/images-partial.png"], video_urls=["/uploads/videos-partial.mp4"], media_status="processing"
    )

    def broken_transcoder(path):
        raise RuntimeError("codec exploded")

    monkeypatch.setattr(media, "optimize_video", broken_transcoder)
    media.optimize_property_media(p.id, media.SavedMedia(images=[image], videos=[video]))

    with session_scope() as db:
        stored = db.get(Property, p.id)
        assert stored.media_status == "failed"
        assert stored.image_urls == ["/uploads/images-partial-opt.webp"]
        assert stored.video_urls == ["/uploads/videos-partial.mp4"]
    assert (uploads_dir() / "images-partial-opt.webp").exists()
    assert not os.path.exists(image)
    assert os.path.exists(video)


def test_failed_store_keeps_raw_files(make_property, monkeypatch):
    image = _raw_image("images-unsaved.png")
    p = make_property(image_urls=["/uploads/images-unsaved.png"], media_status="processing")

    def broken_swap(values, replacements):
        raise RuntimeError("db went away")

    monkeypatch.setattr(media, "_swap", broken_swap)
    media.optimize_property_media(p.id, media.SavedMedia(images=[image]))

    with session_scope() as db:
        stored = db.get(Property, p.id)
        assert stored.media_status == "failed"
        assert stored.image_urls == ["/uploads/images-unsaved.png"]
    assert os.path.exists(image)
    assert not (uploads_dir() / "images-unsaved-opt.webp").exists()


def test_transcodes_are_bounded(monkeypatch):
    limit = 2
    monkeypatch.setattr(media, "_transcode_slots", threading.BoundedSemaphore(limit))
    lock = threading.Lock()
    release = threading.Event()
    state = {"running": 0, "peak": 0}

    def slow_transcoder(path):
        with lock:
            state["running"] += 1
            state["peak"] = max(state["peak"], state["running"])
        release.wait(timeout=5)
        with lock:
            state["running"] -= 1
        return path

    workers = [threading.Thread(target=media._transcode, args=(slow_transcoder, f"/tmp/{i}.mp4")) for i in range(6)]
    for w in workers:
        w.start()
    deadline = time.monotonic() + 5
    while state["running"] < limit and time.monotonic() < deadline:
        time.sleep(0.01)
    time.sleep(0.05)
    assert state["running"] == limit
    release.set()
    for w in workers:
        w.join(timeout=5)
    assert state["peak"] == limit
    assert state["running"] == 0
