from __future__ import annotations


def test_list_properties_filters_and_has_more(client, make_property):
    for i in range(3):
        make_property(title=f"Doon {i}", city="Dehradun", locality="Rajpur Road")
    make_property(title="Rishi", city="Rishikesh", status="sold")

    r = client.get("/api/properties", params={"limit": 2})
    body = r.json()
    assert r.status_code == 200
    assert body["ok"] is True
    assert body["page"] == 1
    assert body["has_more"] is True
    # The API lists every status, newest first.
    assert [p["title"] for p in body["properties"]] == ["Rishi", "Doon 2"]

    r = client.get("/api/properties", params={"city": "DEHRADUN", "page": 2, "limit": 2})
    body = r.json()
    assert [p["title"] for p in body["properties"]] == ["Doon 0"]
    assert body["has_more"] is False

    r = client.get("/api/properties", params={"locality": "rajpur", "state": "uttarakhand"})
    assert len(r.json()["properties"]) == 3


def test_list_properties_clamps_paging(client, make_property):
    make_property()
    body = client.get("/api/properties", params={"page": -4, "limit": 1000}).json()
    assert body["page"] == 1
    assert len(body["properties"]) == 1
    assert body["has_more"] is False


def test_property_out_shape(client, make_property):
    p = make_property(title="Shape Test", image_urls=["/uploads/a.webp"], features=["Parking", "Lift"])
    body = client.get(f"/api/properties/{p.id}").json()
    assert body["ok"] is True
    prop = body["property"]
    assert prop["id"] == p.id
    assert prop["url"] == f"/property/shape-test-{p.id}"
    assert prop["features"] == ["Parking", "Lift"]
    assert prop["image_urls"] == ["/uploads/a.webp"]
    assert prop["price_display"] == "75,00,000"


def test_get_property_not_found(client):
    r = client.get("/api/properties/12345")
    assert r.status_code == 404
    assert r.json() == {"ok": False, "error": "Not found"}


def test_api_is_rate_limited(client, monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "3")
    for _ in range(3):
        assert client.get("/api/properties").status_code == 200
    r = client.get("/api/properties")
    assert r.status_code == 429
    assert r.json() == {"ok": False, "error": "Too many requests, please try again later."}
    assert int(r.headers["retry-after"]) >= 1
