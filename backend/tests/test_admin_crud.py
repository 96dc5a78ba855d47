from __future__ import annotations

from sqlalchemy import select

from conftest import png_bytes, uploads_dir
from estates.alerts import subscribe
from estates.db import session_scope
from estates.models import Property

JSON = {"Accept": "application/json"}

FORM = {
    "category": "residential_properties",
    "title": "Garden Villa",
    "price": "8500000",
    "location": "Dehradun, Uttarakhand",
    "locality": "Rajpur Road",
    "features": "Parking, Garden, ,Lift",
    "featured": "on",
}


def _load(property_id: int) -> Property:
    with session_scope() as db:
        return db.get(Property, property_id)


def test_create_with_images_optimizes_in_background(admin_client):
    r = admin_client.post(
        "/admin/properties/new",
        data=FORM,
        files=[("images", ("front.png", png_bytes((2400, 1200)), "image/png"))],
        headers=JSON,
    )
    assert r.status_code == 201
    body = r.json()
    assert body["ok"] is True
    assert body["message"] == "Property created successfully"
    created = body["property"]
    # The response carries the raw upload; optimization runs after it.
    assert created["image_urls"][0].endswith(".png")
    assert created["media_status"] == "processing"
    assert created["city"] == "Dehradun"
    assert created["state"] == "Uttarakhand"
    assert created["features"] == ["Parking", "Garden", "Lift"]
    assert created["featured"] is True
    assert "Rajpur Road" in created["search_tags"]
    assert created["seo_meta_description"]

    p = _load(created["id"])
    assert p.media_status == "ready"
    assert len(p.image_urls) == 1
    url = p.image_urls[0]
    assert url.startswith("/uploads/images-") and url.endswith("-opt.webp")
    assert (uploads_dir() / url.rsplit("/", 1)[1]).exists()
    assert not (uploads_dir() / created["image_urls"][0].rsplit("/", 1)[1]).exists()


def test_create_from_form_redirects_to_dashboard(admin_client):
    r = admin_client.post("/admin/properties/new", data=FORM, follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/admin/dashboard?status=created"
    dash = admin_client.get(r.headers["location"])
    assert "Property created." in dash.text
    assert "Garden Villa" in dash.text


def test_create_validation(admin_client):
    r = admin_client.post("/admin/properties/new", json={"title": "No price", "category": "land_plots"})
    assert r.status_code == 400
    assert r.json()["error"] == "Missing required fields"

    r = admin_client.post("/admin/properties/new", json={**FORM, "category": "castle"})
    assert r.status_code == 400

    r = admin_client.post("/admin/properties/new", json={**FORM, "price": "lots"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid price"


def test_create_rejects_bad_file_type_without_leaving_files(admin_client):
    uploads_dir().mkdir(parents=True, exist_ok=True)
    before = set(uploads_dir().iterdir())
    r = admin_client.post(
        "/admin/properties/new",
        data=FORM,
        files=[
            ("images", ("ok.png", png_bytes(), "image/png")),
            ("videos", ("evil.exe", b"MZ", "application/x-msdownload")),
        ],
        headers=JSON,
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid file type"
    assert set(uploads_dir().iterdir()) == before
    with session_scope() as db:
        assert db.execute(select(Property)).first() is None


def test_create_rejects_too_many_files(admin_client):
    files = [("virtualTourFile", (f"t{i}.mp4", b"\x00", "video/mp4")) for i in range(2)]
    r = admin_client.post("/admin/properties/new", data=FORM, files=files, headers=JSON)
    assert r.status_code == 400


def test_video_kept_as_uploaded_without_ffmpeg(admin_client, monkeypatch):
    monkeypatch.setattr("estates.media.shutil.which", lambda name: None)
    r = admin_client.post(
        "/admin/properties/new",
        data=FORM,
        files=[("videos", ("walk.mp4", b"\x00\x00\x00\x18ftypmp42", "video/mp4"))],
        headers=JSON,
    )
    assert r.status_code == 201
    p = _load(r.json()["property"]["id"])
    assert p.media_status == "ready"
    assert p.video_urls == r.json()["property"]["video_urls"]
    assert p.video_urls[0].endswith(".mp4")


def test_create_notifies_subscribers(admin_client, outbox):
    with session_scope() as db:
        subscribe(db, "buyer1@example.com")
        subscribe(db, "Buyer2@Example.com ")
    r = admin_client.post("/admin/properties/new", json=FORM)
    assert r.status_code == 201
    alerts = [m for m in outbox if m["subject"].startswith("New property listed")]
    assert len(alerts) == 1
    assert alerts[0]["to"] == "alerts@example.com"
    assert sorted(alerts[0]["bcc"]) == ["buyer1@example.com", "buyer2@example.com"]
    assert f"https://example.com/property/garden-villa-{r.json()['property']['id']}" in alerts[0]["text"]


def test_update_appends_media_and_handles_checkbox(admin_client, make_property):
    p = make_property(title="Old Title", featured=True, image_urls=["/uploads/old.webp"])
    r = admin_client.post(
        f"/admin/properties/{p.id}/update",
        data={"title": "New Title", "features": "Pool"},
        files=[("images", ("new.png", png_bytes(), "image/png"))],
        headers=JSON,
    )
    assert r.status_code == 200
    updated = _load(p.id)
    assert updated.title == "New Title"
    # Unchecked checkbox: the field is absent from the form.
    assert updated.featured is False
    assert updated.features == ["Pool"]
    assert updated.image_urls[0] == "/uploads/old.webp"
    assert updated.image_urls[1].endswith("-opt.webp")
    assert updated.price == p.price


def test_update_json_is_partial(admin_client, make_property):
    p = make_property(featured=True)
    r = admin_client.post(f"/admin/properties/{p.id}/update", json={"price": 1234, "status": "sold"})
    assert r.status_code == 200
    assert r.json()["property"]["price"] == 1234
    updated = _load(p.id)
    assert updated.status == "sold"
    assert updated.featured is True
    assert updated.title == p.title


def test_update_replaces_map3d_and_removes_old_file(admin_client, make_property):
    uploads_dir().mkdir(parents=True, exist_ok=True)
    old = uploads_dir() / "map3dFile-old.glb"
    old.write_bytes(b"glTF-old")
    p = make_property(map3d_url="/uploads/map3dFile-old.glb")

    r = admin_client.post(
        f"/admin/properties/{p.id}/update",
        data={"title": p.title},
        files=[("map3dFile", ("site.glb", b"glTF-new", "model/gltf-binary"))],
        headers=JSON,
    )
    assert r.status_code == 200
    updated = _load(p.id)
    assert updated.map3d_url.startswith("/uploads/map3dFile-")
    assert updated.map3d_url.endswith(".glb")
    assert updated.map3d_url != "/uploads/map3dFile-old.glb"
    assert not old.exists()


def test_update_and_delete_unknown_property(admin_client):
    assert admin_client.post("/admin/properties/999/update", json={"title": "x"}).status_code == 404
    assert admin_client.post("/admin/properties/999/delete", headers=JSON).status_code == 404
    assert admin_client.get("/admin/properties/999/edit").status_code == 404


def test_edit_page_prefills_form(admin_client, make_property):
    p = make_property(title="Editable Cottage")
    r = admin_client.get(f"/admin/properties/{p.id}/edit")
    assert r.status_code == 200
    assert f'action="/admin/properties/{p.id}/update"' in r.text
    assert 'value="Editable Cottage"' in r.text


def test_delete_removes_row_and_files(admin_client, make_property):
    uploads_dir().mkdir(parents=True, exist_ok=True)
    img = uploads_dir() / "images-del.webp"
    img.write_bytes(b"x")
    p = make_property(image_urls=["/uploads/images-del.webp"])

    r = admin_client.post(f"/admin/properties/{p.id}/delete", headers=JSON)
    assert r.json() == {"ok": True, "id": p.id}
    assert _load(p.id) is None
    assert not img.exists()

    p2 = make_property()
    r = admin_client.post(f"/admin/properties/{p2.id}/delete", follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/admin/dashboard?status=deleted"


def test_properties_json_buckets(admin_client, make_property):
    make_property(title="Flat", category="residential_properties")
    make_property(title="Shop", category="commercial_plots")
    make_property(title="Farm", category="premium_investment", status="sold")
    body = admin_client.get("/admin/properties/json").json()
    assert body["ok"] is True
    assert [p["title"] for p in body["residential"]] == ["Flat"]
    assert [p["title"] for p in body["commercial_plots"]] == ["Shop"]
    assert body["land_plots"] == []
    assert [p["title"] for p in body["premium_investment"]] == ["Farm"]


def test_metrics(admin_client):
    admin_client.get("/")
    body = admin_client.get("/admin/metrics").json()
    assert body["ok"] is True
    assert body["health"]["status"] == "healthy"
    assert body["metrics"]["requests"]["total"] >= 1


def test_update_keeps_urls_swapped_by_running_optimization(admin_client, make_property, monkeypatch):
    from PIL import Image

    from estates import media

    uploads_dir().mkdir(parents=True, exist_ok=True)
    first = uploads_dir() / "images-first.png"
    Image.new("RGB", (20, 20)).save(first, format="PNG")
    p = make_property(image_urls=["/uploads/images-first.png"], media_status="processing")

    real_save_uploads = media.save_uploads

    def save_while_first_upload_finishes(files):
        # The earlier upload's optimization commits while this request is in flight.
        media.optimize_property_media(p.id, media.SavedMedia(images=[str(first.resolve())]))
        return real_save_uploads(files)

    monkeypatch.setattr("estates.routers.admin.save_uploads", save_while_first_upload_finishes)
    r = admin_client.post(
        f"/admin/properties/{p.id}/update",
        data={"title": p.title},
        files=[("images", ("second.png", png_bytes(), "image/png"))],
        headers=JSON,
    )
    assert r.status_code == 200

    updated = _load(p.id)
    assert updated.image_urls[0] == "/uploads/images-first-opt.webp"
    assert updated.image_urls[1].startswith("/uploads/images-") and updated.image_urls[1].endswith("-opt.webp")
    for url in updated.image_urls:
        assert (uploads_dir() / url.rsplit("/", 1)[1]).exists()
