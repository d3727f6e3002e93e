import pytest
from fastapi.testclient import TestClient

from main import create_app

THUMB = "albums/a1/medium/p1.jpg"


@pytest.fixture
def client(app_settings, tmp_path):
    target = tmp_path / "media" / THUMB
    target.parent.mkdir(parents=True)
    target.write_bytes(b"\xff\xd8" + b"x" * 1232)

    with TestClient(create_app(app_settings)) as c:
        yield c


def test_serves_local_thumbnail(client):
    response = client.get(f"/storage/serve/local/{THUMB}")

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert len(response.content) == 1234
    cache_control = response.headers["cache-control"]
    assert cache_control.startswith("public")
    max_age = int(cache_control.split("max-age=")[1].split(",")[0])
    assert max_age >= 15_552_000
    assert response.headers["etag"]
    assert response.headers["last-modified"].endswith("GMT")
    assert response.headers["x-request-id"]


def test_conditional_request_returns_304(client):
    first = client.get(f"/storage/serve/local/{THUMB}")

    second = client.get(f"/storage/serve/local/{THUMB}", headers={"If-None-Match": first.headers["etag"]})

    assert second.status_code == 304
    assert second.content == b""
    assert "max-age" in second.headers["cache-control"]


def test_head_reports_size_without_body(client):
    response = client.head(f"/storage/serve/local/{THUMB}")

    assert response.status_code == 200
    assert response.headers["content-length"] == "1234"
    assert response.content == b""


def test_percent_encoded_key(client):
    response = client.get("/storage/serve/local/albums%2Fa1%2Fmedium%2Fp1.jpg")
    assert response.status_code == 200


def test_missing_object_is_404(client):
    response = client.get("/storage/serve/local/albums/a1/none.jpg")

    assert response.status_code == 404
    assert response.json() == {"error": "File not found", "path": "albums/a1/none.jpg", "provider": "local"}


def test_unknown_provider_is_400(client):
    response = client.get("/storage/serve/dropbox/a.jpg")

    assert response.status_code == 400
    assert response.json()["provider"] == "dropbox"


def test_disabled_provider_is_500(client):
    response = client.get("/storage/serve/s3/albums/a1/p1.jpg")

    assert response.status_code == 500
    assert response.json()["classification"] == "configuration"


def test_traversal_is_rejected(client):
    response = client.get("/storage/serve/local/..%2F..%2Fetc%2Fpasswd")
    assert response.status_code in (400, 404)


def test_health_lists_active_providers(client):
    assert client.get("/health").json()["data"]["active_providers"] == []

    client.get(f"/storage/serve/local/{THUMB}")

    assert client.get("/health").json()["data"]["active_providers"] == ["local"]


def test_resolve_returns_servable_thumbnail_url(client):
    record = {
        "provider": "local",
        "key": "albums/a1/p1.jpg",
        "thumbnails": {"small": "albums/a1/small/p1.jpg", "medium": THUMB},
        "thumbnails_reliable": True,
    }

    data = client.post("/storage/resolve", json=record).json()["data"]

    assert data == {
        "provider": "local",
        "key": THUMB,
        "variant": "thumbnail",
        "is_placeholder": False,
        "url": f"/storage/serve/local/{THUMB}",
    }
    assert client.get(data["url"]).status_code == 200


def test_resolve_original_and_placeholder(client):
    record = {"provider": "local", "key": "albums/a1/p 1.jpg", "thumbnails": {"medium": THUMB}}

    original = client.post("/storage/resolve?prefer_thumbnail=false", json=record).json()["data"]
    placeholder = client.post("/storage/resolve").json()["data"]

    assert original["variant"] == "original"
    assert original["url"] == "/storage/serve/local/albums/a1/p%201.jpg"
    assert placeholder["is_placeholder"] is True
    assert placeholder["url"] == "/storage/serve/local/placeholder.jpg"
