"""
Web, news and social adapters.

Tests verify:
- Each alternative response shape is understood
- Duplicate URLs inside one provider collapse to one finding
- Missing credentials short-circuit without any request
- Failures come back as an empty result with readable errors, never an exception
"""

import asyncio
import json
from datetime import datetime, timezone

import httpx

from conftest import json_transport
from trendsignals.providers import (
    NewsSearchAdapter,
    SocialSearchAdapter,
    WebSearchAdapter,
    dig,
    first_match,
    freshness_token,
    pick_int,
)
from trendsignals.strategy import resolve


def gemini_body(text, *urls):
    return {
        "candidates": [
            {
                "content": {"parts": [{"text": text}]},
                "groundingMetadata": {
                    "groundingChunks": [{"web": {"uri": url, "title": f"title {i}"}} for i, url in enumerate(urls)]
                },
            }
        ]
    }


class TestHelpers:
    def test_dig_tolerates_missing_steps(self):
        data = {"a": [{"b": 1}]}
        assert dig(data, "a", 0, "b") == 1
        assert dig(data, "a", 3, "b") is None
        assert dig(data, "x", "y") is None
        assert dig("not a dict", "a") is None

    def test_first_match_reports_strategy(self):
        extractors = [("missing", lambda d: d["nope"]), ("present", lambda d: d["yes"])]
        assert first_match({"yes": [1]}, extractors) == ("present", [1])
        assert first_match({}, extractors) is None

    def test_pick_int_parses_formatted_numbers(self):
        assert pick_int({"reviews": "1,234"}, "reviews") == 1234
        assert pick_int({"reviews": None, "count": 5}, "reviews", "count") == 5
        assert pick_int({}, "reviews") is None

    def test_pick_int_takes_first_number_only(self):
        assert pick_int({"rating": "4.6 (1,234)"}, "rating") == 4
        assert pick_int({"reviews": "12,345 ratings"}, "reviews") == 12345
        assert pick_int({"reviews": "no reviews yet"}, "reviews") is None

    def test_freshness_tokens(self):
        assert [freshness_token(d) for d in (1, 7, 30, 365)] == ["pd", "pw", "pm", "py"]


class TestWebSearchAdapter:
    def test_grounded_response(self, settings):
        calls = []
        transport = json_transport(lambda request: gemini_body("Linen is up", "https://a.com/1", "https://b.com/2"), calls)
        adapter = WebSearchAdapter(settings, transport=transport)
        config = resolve(10).config_for("web")

        result = asyncio.run(adapter.fetch(["linen", "linen trending"], config))

        assert len(calls) == 2
        assert calls[0].url.params["key"] == "gemini-test"
        assert json.loads(calls[0].content)["tools"] == [{"google_search": {}}]
        assert '--- ANGLE: "linen" ---' in result.text
        assert "Linen is up" in result.text
        # Same citations under both angles collapse to one finding each.
        assert [item.url for item in result.findings] == ["https://a.com/1", "https://b.com/2"]
        assert all(item.source_provider == "web" for item in result.findings)
        assert result.errors == []

    def test_snake_case_and_plain_text_shapes(self, settings):
        def handler(request):
            body = json.loads(request.content)
            prompt = body["contents"][0]["parts"][0]["text"]
            if '"linen"' in prompt:
                return {
                    "candidates": [
                        {"grounding_metadata": {"grounding_chunks": [{"web": {"uri": "https://c.com"}}]}}
                    ],
                    "text": "snake case",
                }
            return {"output_text": "plain", "citations": ["https://d.com"]}

        adapter = WebSearchAdapter(settings, transport=json_transport(handler))
        result = asyncio.run(adapter.fetch(["linen", "linen popular"], resolve(10).config_for("web")))

        assert "snake case" in result.text
        assert "plain" in result.text
        assert {item.url for item in result.findings} == {"https://c.com", "https://d.com"}

    def test_unknown_shape_yields_nothing(self, settings):
        adapter = WebSearchAdapter(settings, transport=json_transport(lambda request: {"unexpected": True}))
        result = asyncio.run(adapter.fetch(["linen"], resolve(10).config_for("web")))
        assert result.text == ""
        assert result.findings == []

    def test_unconfigured_makes_no_request(self, bare_settings):
        calls = []
        adapter = WebSearchAdapter(bare_settings, transport=json_transport(lambda request: {}, calls))
        result = asyncio.run(adapter.fetch(["linen"], resolve(10).config_for("web")))
        assert not adapter.configured
        assert calls == []
        assert not result.has_data

    def test_http_error_becomes_soft_error(self, settings):
        adapter = WebSearchAdapter(settings, transport=json_transport(lambda request: (500, {"error": "down"})))
        result = asyncio.run(adapter.fetch(["linen", "linen trending"], resolve(10).config_for("web")))
        assert not result.has_data
        assert result.errors == ["linen: HTTP 500", "linen trending: HTTP 500"]

    def test_angles_trimmed_to_budget(self, settings):
        calls = []
        adapter = WebSearchAdapter(settings, transport=json_transport(lambda request: gemini_body("x"), calls))
        asyncio.run(adapter.fetch(["a", "b", "c", "d"], resolve(10).config_for("web")))
        assert len(calls) == 2


class TestNewsSearchAdapter:
    @staticmethod
    def handler(request):
        query = request.url.params["q"]
        if request.url.path.endswith("/news/search"):
            return {"results": [{"url": "https://news.com/1", "title": "News", "description": "d", "age": "2 hours ago"}]}
        if "discussion community" in query:
            return {"web": {"results": [{"url": "https://forum.com/t/1", "title": "Thread"}]}}
        return {
            "web": {
                "results": [
                    {"url": "https://shop.com/a", "title": "Shop", "extra_snippets": ["love it"], "meta_url": {"hostname": "shop.com"}},
                    {"url": "https://news.com/1", "title": "Dup"},
                ]
            },
            "discussions": {"results": [{"url": "https://reddit.com/r/x/1", "title": "Reddit"}]},
        }

    def test_conservative_skips_community_query(self, settings):
        calls = []
        adapter = NewsSearchAdapter(settings, transport=json_transport(self.handler, calls))
        result = asyncio.run(adapter.fetch(["linen"], resolve(10).config_for("news")))

        assert len(calls) == 2
        assert all(call.url.params["freshness"] == "pm" for call in calls)
        assert calls[0].headers["X-Subscription-Token"] == "brave-test"
        assert result.text.index("WEB RESULTS") < result.text.index("COMMUNITY DISCUSSIONS")
        assert "COMMUNITY VOICES" not in result.text
        urls = [item.url for item in result.findings]
        assert len(urls) == len(set(urls))
        assert "https://news.com/1" in urls

    def test_predictive_puts_community_first(self, settings):
        calls = []
        adapter = NewsSearchAdapter(settings, transport=json_transport(self.handler, calls))
        result = asyncio.run(adapter.fetch(["linen"], resolve(90).config_for("news")))

        assert len(calls) == 3
        assert all(call.url.params["freshness"] == "pd" for call in calls)
        assert result.text.index("COMMUNITY VOICES") < result.text.index("WEB RESULTS")
        assert result.findings[0].url == "https://reddit.com/r/x/1"
        assert "https://forum.com/t/1" in [item.url for item in result.findings]

    def test_partial_failure_keeps_surviving_data(self, settings):
        def handler(request):
            if request.url.path.endswith("/news/search"):
                return 503, {}
            return self.handler(request)

        adapter = NewsSearchAdapter(settings, transport=json_transport(handler))
        result = asyncio.run(adapter.fetch(["linen"], resolve(10).config_for("news")))
        assert result.has_data
        assert result.errors == []

    def test_total_failure_is_reported(self, settings):
        adapter = NewsSearchAdapter(settings, transport=json_transport(lambda request: (401, {})))
        result = asyncio.run(adapter.fetch(["linen"], resolve(10).config_for("news")))
        assert not result.has_data
        assert result.errors == ["linen: HTTP 401"]


class TestSocialSearchAdapter:
    def test_request_carries_band_filters(self, settings):
        calls = []
        body = {
            "choices": [{"message": {"content": "people say it slaps"}}],
            "citations": ["https://x.com/a/status/1", "https://x.com/a/status/1"],
            "usage": {"num_sources_used": 4},
        }
        adapter = SocialSearchAdapter(settings, transport=json_transport(lambda request: body, calls))
        result = asyncio.run(adapter.fetch(["linen"], resolve(10).config_for("social")))

        params = json.loads(calls[0].content)["search_parameters"]
        assert params["sources"][0] == {"type": "x", "post_favorite_count": 5000, "post_view_count": 100000}
        assert {"type": "web", "country": "US"} not in params["sources"]
        assert params["return_citations"] is True
        assert calls[0].headers["Authorization"] == "Bearer xai-test"
        assert "people say it slaps" in result.text
        assert [item.url for item in result.findings] == ["https://x.com/a/status/1"]

    def test_predictive_has_no_engagement_floor(self, settings):
        adapter = SocialSearchAdapter(settings)
        sources = adapter.source_types(resolve(90).config_for("social"))
        assert sources[0] == {"type": "x"}
        assert {"type": "web", "country": "US"} in sources

    def test_date_range_follows_freshness(self, settings):
        adapter = SocialSearchAdapter(settings)
        today = datetime(2025, 3, 15, tzinfo=timezone.utc)
        assert adapter.date_range(resolve(90).config_for("social"), today=today) == ("2025-03-08", "2025-03-15")

    def test_alternative_shapes(self, settings):
        def handler(request):
            prompt = json.loads(request.content)["messages"][1]["content"]
            if '"linen"' in prompt:
                return {"output_text": "from output_text", "search_results": [{"url": "https://t.com/1"}]}
            return {
                "choices": [
                    {
                        "message": {
                            "content": [{"type": "text", "text": "list content"}],
                            "citations": [{"url": "https://t.com/2"}],
                        }
                    }
                ]
            }

        adapter = SocialSearchAdapter(settings, transport=json_transport(handler))
        result = asyncio.run(adapter.fetch(["linen", "linen trending"], resolve(10).config_for("social")))
        assert "from output_text" in result.text
        assert "list content" in result.text
        assert [item.url for item in result.findings] == ["https://t.com/1", "https://t.com/2"]

    def test_malformed_usage_keeps_parsed_data(self, settings):
        body = {
            "choices": [{"message": {"content": "campers love enamel mugs"}}],
            "citations": ["https://x.com/a/status/9"],
            "usage": "n/a",
        }
        adapter = SocialSearchAdapter(settings, transport=json_transport(lambda request: body))
        result = asyncio.run(adapter.fetch(["vintage camping"], resolve(50).config_for("social")))

        assert "campers love enamel mugs" in result.text
        assert "sources searched: 0" in result.text
        assert [item.url for item in result.findings] == ["https://x.com/a/status/9"]
        assert result.errors == []

    def test_malformed_json_is_contained(self, settings):
        transport = json_transport(lambda request: httpx.Response(200, content=b"<html>"))
        adapter = SocialSearchAdapter(settings, transport=transport)
        result = asyncio.run(adapter.fetch(["linen"], resolve(10).config_for("social")))
        assert not result.has_data
        assert len(result.errors) == 1
