import asyncio
import json

import requests

from geolayers.loader import DataLoader, FileFetcher, HttpFetcher
from geolayers.sanitize import empty_collection

from conftest import FakeFetcher, lines_fc, outline_fc


def test_load_fetches_every_kind_with_tier_fallback(cfg, fetcher):
    loader = DataLoader(fetcher, cfg.data.sources)
    result = asyncio.run(loader.load("BRA"))

    assert loader.is_current(result)
    assert set(result.payloads) == {"outline", "rivers", "cities", "roads", "elevation"}
    assert result.payloads["rivers"]["features"][0]["geometry"]["type"] == "LineString"
    assert fetcher.calls.index("BRA/rivers_highres.geojson") < fetcher.calls.index("BRA/rivers.geojson")


def test_primary_tier_wins_when_present(cfg):
    highres = lines_fc([[0, 0], [5, 5]])
    fetcher = FakeFetcher(
        {"BRA/rivers_highres.geojson": highres, "BRA/rivers.geojson": lines_fc([[1, 1], [2, 2]])}
    )
    loader = DataLoader(fetcher, cfg.data.sources, kinds=("rivers",))
    result = asyncio.run(loader.load("BRA"))
    assert result.payloads == {"rivers": highres}
    assert "BRA/rivers.geojson" not in fetcher.calls


def test_failures_fall_back_to_empty_collection(cfg):
    fetcher = FakeFetcher(
        {
            "BRA/outline.geojson": 500,
            "BRA/rivers_highres.geojson": OSError("boom"),
            "BRA/rivers.geojson": requests.ConnectionError("offline"),
            "BRA/cities.geojson": ValueError("bad json"),
        }
    )
    loader = DataLoader(fetcher, cfg.data.sources)
    result = asyncio.run(loader.load("BRA"))
    assert not result.stale
    assert all(payload == empty_collection() for payload in result.payloads.values())


def test_new_load_supersedes_in_flight_batch(cfg, fetcher):
    async def scenario():
        fetcher.gates["BRA/outline.geojson"] = asyncio.Event()
        loader = DataLoader(fetcher, cfg.data.sources)
        first = asyncio.ensure_future(loader.load("BRA"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        second = await loader.load("CAN")
        return loader, await first, second

    loader, first, second = asyncio.run(scenario())
    assert first.stale
    assert not loader.is_current(first)
    assert loader.is_current(second)
    assert second.location_id == "CAN"
    assert second.generation == loader.generation == 2


def test_explicit_cancel_marks_batch_stale(cfg, fetcher):
    async def scenario():
        fetcher.gates["BRA/roads.geojson"] = asyncio.Event()
        loader = DataLoader(fetcher, cfg.data.sources)
        pending = asyncio.ensure_future(loader.load("BRA"))
        await asyncio.sleep(0)
        loader.cancel()
        return await pending

    assert asyncio.run(scenario()).stale


def test_file_fetcher_reads_and_reports_missing(tmp_path):
    (tmp_path / "BRA").mkdir()
    (tmp_path / "BRA" / "outline.geojson").write_text(json.dumps(outline_fc(0, 0)), encoding="utf-8")
    fetcher = FileFetcher(tmp_path)

    found = asyncio.run(fetcher("BRA/outline.geojson"))
    missing = asyncio.run(fetcher("BRA/roads.geojson"))

    assert found.ok and found.data["type"] == "FeatureCollection"
    assert not missing.ok and missing.status == 404


class _StubResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload

    def json(self):
        return self._payload


class _StubSession:
    def __init__(self, response):
        self.headers = {}
        self.response = response
        self.urls = []

    def get(self, url, timeout):
        self.urls.append((url, timeout))
        return self.response


def test_http_fetcher_builds_urls_and_maps_status():
    session = _StubSession(_StubResponse(200, {"type": "FeatureCollection", "features": []}))
    fetcher = HttpFetcher("https://example.org/data/", timeout_s=5, session=session)

    result = asyncio.run(fetcher("BRA/outline.geojson"))

    assert result.ok
    assert session.urls == [("https://example.org/data/BRA/outline.geojson", 5)]
    assert session.headers["User-Agent"] == "geolayers/0.1"

    session.response = _StubResponse(404)
    assert asyncio.run(fetcher("BRA/roads.geojson")).status == 404
