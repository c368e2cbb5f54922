import json

import pytest
from fastapi.testclient import TestClient

from depfeed.main import app
from tests.helpers import chain_channel


@pytest.fixture
def client(data_dir) -> TestClient:
    return TestClient(app)


@pytest.fixture
def stored(client, feed_bytes) -> TestClient:
    response = client.put("/api/feeds/arch", content=feed_bytes)
    assert response.status_code == 200
    return client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_empty_repository(client):
    assert client.get("/api/feeds").json() == {"Data": []}


def test_put_and_list(stored):
    data = stored.get("/api/feeds").json()["Data"]
    assert [f["feed_id"] for f in data] == ["arch"]
    assert data[0]["macro_count"] == 1


def test_feed_is_served_bit_exact(stored, feed_bytes):
    response = stored.get("/api/feeds/arch")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert response.content == feed_bytes


def test_put_stores_file_in_data_dir(stored, data_dir, feed_bytes):
    assert (data_dir / "feeds" / "arch.json").read_bytes() == feed_bytes


def test_put_rejects_malformed_feed(client):
    response = client.put("/api/feeds/bad", content=b"{")
    assert response.status_code == 422
    assert "Malformed JSON" in response.json()["detail"]
    assert client.get("/api/feeds/bad").status_code == 404


def test_put_rejects_bad_feed_id(client, feed_bytes):
    assert client.put("/api/feeds/with space", content=feed_bytes).status_code == 400


def test_unknown_feed(client):
    assert client.get("/api/feeds/missing").status_code == 404
    assert client.get("/api/feeds/missing/resolved").status_code == 404
    assert client.delete("/api/feeds/missing").status_code == 404


def test_delete(stored):
    assert stored.delete("/api/feeds/arch").status_code == 204
    assert stored.get("/api/feeds/arch").status_code == 404


def test_resolved(stored):
    data = stored.get("/api/feeds/arch/resolved").json()["Data"]
    url = chain_channel(data)["files"][0]["url"]
    assert url == "https://raw.githubusercontent.com/arch1t3cht/Aegisub-Scripts/release/macros/arch.AegisubChain.moon"


def test_validation(stored):
    data = stored.get("/api/feeds/arch/validation").json()["Data"]
    assert data["valid"] is True
    assert data["issues"] == []


def test_script(stored):
    data = stored.get("/api/feeds/arch/scripts/arch.Util").json()["Data"]
    assert data["type"] == "module"
    assert data["channels"]["release"]["version"] == "0.1.0"


def test_script_unknown_channel(stored):
    assert stored.get("/api/feeds/arch/scripts/arch.Util", params={"channel": "beta"}).status_code == 404
    assert stored.get("/api/feeds/arch/scripts/nobody.Nothing").status_code == 404


def test_changelog(stored):
    response = stored.get("/api/feeds/arch/scripts/arch.AegisubChain/changelog", params={"since": "0.3.0"})
    assert response.json()["Data"] == [
        {"version": "0.4.0", "changes": ["Allow chains to prompt for a single dialog."]},
    ]


def test_changelog_bad_since(stored):
    response = stored.get("/api/feeds/arch/scripts/arch.AegisubChain/changelog", params={"since": "soon"})
    assert response.status_code == 422


def test_search(stored):
    data = stored.get("/api/search", params={"q": "aegisubchain"}).json()["Data"]
    assert [r["namespace"] for r in data] == ["arch.AegisubChain"]
    assert stored.get("/api/search", params={"q": "zzz"}).status_code == 204


def test_validate_without_storing(client, feed_dict):
    feed_dict["dependencyControlFeedFormatVersion"] = "banana"
    response = client.post("/api/validate", content=json.dumps(feed_dict))
    data = response.json()["Data"]
    assert data["valid"] is False
    assert [i["code"] for i in data["issues"]] == ["format-version"]
    assert client.get("/api/feeds").json() == {"Data": []}


def test_validate_malformed(client):
    data = client.post("/api/validate", content=b"[]").json()["Data"]
    assert data["valid"] is False
    assert data["issues"][0]["code"] == "parse"


def test_import_unreachable(client, monkeypatch):
    from depfeed.api import feeds
    from depfeed.domain.errors import FeedFetchError

    async def failing_fetch(url, **kwargs):
        raise FeedFetchError(f"Failed to fetch {url}")

    monkeypatch.setattr(feeds, "fetch_feed", failing_fetch)
    response = client.post("/api/feeds/import", json={"feed_id": "amo", "url": "https://example.org/feed.json"})
    assert response.status_code == 502


def test_import(client, monkeypatch, feed_bytes):
    from depfeed.api import feeds

    async def fake_fetch(url, **kwargs):
        return feed_bytes

    monkeypatch.setattr(feeds, "fetch_feed", fake_fetch)
    response = client.post("/api/feeds/import", json={"feed_id": "arch", "url": "https://example.org/feed.json"})
    assert response.status_code == 200
    assert client.get("/api/feeds/arch").content == feed_bytes


def test_search_match_type(stored):
    data = stored.get("/api/search", params={"q": "arch.*", "matchType": "Wildcard"}).json()["Data"]
    assert [r["namespace"] for r in data] == ["arch.AegisubChain", "arch.Util"]
    assert stored.get("/api/search", params={"q": "util", "matchType": "Exact"}).status_code == 204
