"""HTTP routes: market data, research, watchlist and journal."""
import httpx
import pytest
from fastapi.testclient import TestClient

from app.api.v1 import research as research_routes
from app.integrations.alpha_vantage import get_alpha_gateway
from app.main import app
from app.services.llm import LLMError


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def api_gateway(make_gateway):
    gateway = make_gateway()
    app.dependency_overrides[get_alpha_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.pop(get_alpha_gateway, None)


@pytest.fixture(autouse=True)
def _empty_tables(client):
    yield
    for item in client.get("/api/v1/watchlist").json():
        client.delete(f"/api/v1/watchlist/{item['symbol']}")
    for entry in client.get("/api/v1/journal").json():
        client.delete(f"/api/v1/journal/{entry['id']}")


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "MungerMind"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/api/v1/health").json()["service"] == "mungermind-api"


class TestMarketData:

    def test_search(self, client, api_gateway):
        response = client.get("/api/v1/search", params={"q": "tesco"})

        assert response.status_code == 200
        assert response.headers["cache-control"] == "s-maxage=60"
        assert response.json() == {"results": [
            {"symbol": "TESCO", "name": "Tesco Inc"},
            {"symbol": "TESCO.LON", "name": "Tesco PLC"},
        ]}

    def test_search_query_too_short(self, client, api_gateway, fake_av):
        response = client.get("/api/v1/search", params={"q": "ab"})
        assert response.status_code == 422
        assert fake_av.call_count == 0

    def test_quote(self, client, api_gateway):
        response = client.get("/api/v1/quote/ibm")
        assert response.status_code == 200
        assert response.json() == {"symbol": "IBM", "price": 101.5, "change": 1.25}

    def test_daily(self, client, api_gateway):
        response = client.get("/api/v1/daily/IBM")
        assert response.status_code == 200
        body = response.json()
        assert body["symbol"] == "IBM"
        assert body["series"]["2026-03-06"]["1. open"] == "98.00"

    def test_repeat_quote_served_from_cache(self, client, api_gateway, fake_av):
        client.get("/api/v1/quote/IBM")
        client.get("/api/v1/quote/IBM")
        assert fake_av.call_count == 1

        status = client.get("/api/v1/gateway/status").json()
        assert status["budget"]["tokens_remaining"] == 4
        assert status["cache"]["cache_hits"] == 1

    def test_rate_limit_maps_to_429(self, client, api_gateway):
        for symbol in ["AAA", "BBB", "CCC", "DDD", "EEE"]:
            assert client.get(f"/api/v1/quote/{symbol}").status_code == 200

        response = client.get("/api/v1/quote/FFF")
        assert response.status_code == 429
        assert response.headers["retry-after"] == "60"
        assert response.json()["error"] == "rate_limited"

    def test_daily_quota_maps_to_429(self, client, make_gateway):
        gateway = make_gateway(requests_per_day=1)
        app.dependency_overrides[get_alpha_gateway] = lambda: gateway
        try:
            client.get("/api/v1/quote/AAA")
            response = client.get("/api/v1/quote/BBB")
        finally:
            app.dependency_overrides.pop(get_alpha_gateway, None)

        assert response.status_code == 429
        assert response.json()["error"] == "daily_quota_exceeded"
        assert "tomorrow" in response.json()["detail"]

    def test_malformed_quote_maps_to_502(self, client, api_gateway, fake_av):
        fake_av.overrides["GLOBAL_QUOTE"] = {"Global Quote": {}}
        response = client.get("/api/v1/quote/NOPE")
        assert response.status_code == 502
        assert response.json()["error"] == "malformed_response"

    def test_transport_failure_maps_to_502(self, client, api_gateway, fake_av):
        fake_av.overrides["GLOBAL_QUOTE"] = httpx.ConnectError("unreachable")
        response = client.get("/api/v1/quote/IBM")
        assert response.status_code == 502
        assert response.json()["error"] == "upstream_unavailable"

    def test_missing_key_maps_to_503(self, client, make_gateway):
        gateway = make_gateway(api_key="")
        app.dependency_overrides[get_alpha_gateway] = lambda: gateway
        try:
            response = client.get("/api/v1/quote/IBM")
        finally:
            app.dependency_overrides.pop(get_alpha_gateway, None)
        assert response.status_code == 503

    def test_invalid_symbol(self, client, api_gateway):
        assert client.get("/api/v1/quote/WAY-TOO-LONG-FOR-A-TICKER").status_code == 422


class TestDeepResearch:

    def test_report(self, client, monkeypatch):
        calls = []

        async def fake_deep_research(topic, provider=None, *, force_refresh=False):
            calls.append((topic, provider, force_refresh))
            return f"# {topic}\nReport"

        monkeypatch.setattr(research_routes, "deep_research", fake_deep_research)
        response = client.get("/api/v1/deep-research", params={"topic": " KO ", "provider": "openai"})

        assert response.status_code == 200
        assert response.headers["cache-control"] == "s-maxage=3600"
        assert response.json() == {"topic": "KO", "provider": "openai", "report": "# KO\nReport"}
        assert calls == [("KO", "openai", False)]

    def test_defaults_to_configured_provider(self, client, monkeypatch):
        async def fake_deep_research(topic, provider=None, *, force_refresh=False):
            return "ok"

        monkeypatch.setattr(research_routes, "deep_research", fake_deep_research)
        response = client.get("/api/v1/deep-research", params={"topic": "KO"})
        assert response.json()["provider"] == "gemini"

    def test_blank_topic(self, client):
        assert client.get("/api/v1/deep-research", params={"topic": "   "}).status_code == 422
        assert client.get("/api/v1/deep-research").status_code == 422

    def test_unknown_provider(self, client):
        response = client.get("/api/v1/deep-research", params={"topic": "KO", "provider": "llama"})
        assert response.status_code == 422

    def test_llm_failure_maps_to_502(self, client, monkeypatch):
        async def failing(topic, provider=None, *, force_refresh=False):
            raise LLMError("gemini", "empty response")

        monkeypatch.setattr(research_routes, "deep_research", failing)
        response = client.get("/api/v1/deep-research", params={"topic": "KO"})
        assert response.status_code == 502
        assert response.json()["error"] == "llm_error"


class TestWatchlist:

    def test_add_list_remove(self, client):
        first = client.post("/api/v1/watchlist", json={"symbol": "ko", "name": "Coca-Cola"})
        assert first.status_code == 201
        assert first.json()["symbol"] == "KO"

        client.post("/api/v1/watchlist", json={"symbol": "AXP", "name": "American Express"})

        items = client.get("/api/v1/watchlist").json()
        assert [i["symbol"] for i in items] == ["AXP", "KO"]

        assert client.delete("/api/v1/watchlist/ko").status_code == 204
        assert [i["symbol"] for i in client.get("/api/v1/watchlist").json()] == ["AXP"]

    def test_duplicate_symbol(self, client):
        client.post("/api/v1/watchlist", json={"symbol": "KO"})
        response = client.post("/api/v1/watchlist", json={"symbol": "ko"})
        assert response.status_code == 409

    @pytest.mark.parametrize("symbol", ["   ", "\t\n"])
    def test_blank_symbol_is_rejected(self, client, symbol):
        response = client.post("/api/v1/watchlist", json={"symbol": symbol})
        assert response.status_code == 422
        assert client.get("/api/v1/watchlist").json() == []

    def test_symbol_is_stored_trimmed(self, client):
        response = client.post("/api/v1/watchlist", json={"symbol": "  ko "})
        assert response.json()["symbol"] == "KO"
        assert client.post("/api/v1/watchlist", json={"symbol": "KO"}).status_code == 409

    def test_remove_missing(self, client):
        assert client.delete("/api/v1/watchlist/ZZZ").status_code == 404


class TestJournal:

    def test_create_and_filter(self, client):
        created = client.post("/api/v1/journal", json={
            "symbol": "brk.b",
            "type": "trade",
            "content": "Bought on the dip.",
        })
        assert created.status_code == 201
        body = created.json()
        assert body["symbol"] == "BRK.B"
        assert body["type"] == "trade"

        client.post("/api/v1/journal", json={"symbol": "KO", "content": "Moat check."})

        assert len(client.get("/api/v1/journal").json()) == 2
        only_brk = client.get("/api/v1/journal", params={"symbol": "BRK.B"}).json()
        assert [e["id"] for e in only_brk] == [body["id"]]

    def test_default_type_is_analysis(self, client):
        body = client.post("/api/v1/journal", json={"symbol": "KO", "content": "Notes"}).json()
        assert body["type"] == "analysis"

    def test_update(self, client):
        entry = client.post("/api/v1/journal", json={"symbol": "KO", "content": "Draft"}).json()

        response = client.patch(f"/api/v1/journal/{entry['id']}", json={"content": "Final"})
        assert response.status_code == 200
        updated = response.json()
        assert updated["content"] == "Final"
        assert updated["type"] == "analysis"
        assert updated["updated_at"] >= entry["updated_at"]

    def test_invalid_type(self, client):
        response = client.post("/api/v1/journal", json={"symbol": "KO", "type": "rumor", "content": "x"})
        assert response.status_code == 422

    def test_blank_symbol_is_rejected(self, client):
        response = client.post("/api/v1/journal", json={"symbol": "   ", "content": "Notes"})
        assert response.status_code == 422
        assert client.get("/api/v1/journal").json() == []

    def test_missing_entry(self, client):
        assert client.patch("/api/v1/journal/nope", json={"content": "x"}).status_code == 404
        assert client.delete("/api/v1/journal/nope").status_code == 404
