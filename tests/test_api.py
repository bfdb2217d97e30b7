"""HTTP surface."""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeAdapter, gateway_for, llm_reply
from trendsignals import main
from trendsignals.aggregator import SignalAggregator
from trendsignals.config import PROVIDER_NAMES


@pytest.fixture
def client(monkeypatch, settings):
    adapters = [
        FakeAdapter("web", urls=["https://a.com"]),
        FakeAdapter("news", configured=False),
        FakeAdapter("social", urls=["https://c.com"]),
        FakeAdapter("marketplace", configured=False),
    ]
    monkeypatch.setattr(main, "settings", settings)
    monkeypatch.setattr(main, "aggregator", SignalAggregator(settings, adapters=adapters))
    monkeypatch.setattr(
        main,
        "gateway",
        gateway_for(lambda request: llm_reply({"trends": [{"topic": "linen", "sources": ["social", "news"]}]})),
    )
    return TestClient(main.app)


class TestEndpoints:
    def test_capabilities(self, client):
        response = client.get("/api/system/capabilities")
        assert response.status_code == 200
        data = response.json()
        assert data["providers"] == {"web": True, "news": False, "social": True, "marketplace": False}
        assert data["llm_enabled"] is True
        assert set(data["deadlines"]) == set(PROVIDER_NAMES)

    def test_signals(self, client):
        response = client.post("/api/signals", json={"topic": "linen", "risk_level": 80})
        assert response.status_code == 200
        data = response.json()
        assert data["band"] == "predictive"
        assert data["all_citations"] == ["https://a.com", "https://c.com"]
        assert data["provider_status"]["news"]["configured"] is False

    def test_trends(self, client):
        response = client.post("/api/trends", json={"topic": "linen", "risk_level": 20})
        assert response.status_code == 200
        trends = response.json()["trends"]
        assert trends[0]["sources"] == ["social"]

    @pytest.mark.parametrize("body", [{"topic": "linen", "risk_level": 101}, {"topic": "linen", "risk_level": -5}, {"topic": ""}])
    def test_invalid_requests(self, client, body):
        assert client.post("/api/signals", json=body).status_code == 422

    def test_blank_topic_after_strip(self, client):
        assert client.post("/api/signals", json={"topic": "   ", "risk_level": 10}).status_code == 422
