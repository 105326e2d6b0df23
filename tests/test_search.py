"""Tests for the Serper web search client."""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from taskbots.tools.search import SERPER_URL, SearchError, WebSearchClient, clamp_count


class TestClampCount:
    @pytest.mark.parametrize("given,expected", [(0, 1), (-3, 1), (5, 5), (10, 10), (25, 10), (None, 5)])
    def test_bounds(self, given, expected):
        assert clamp_count(given) == expected


class TestWebSearchClient:
    @pytest.mark.asyncio
    @respx.mock
    async def test_search_formats_results(self):
        route = respx.post(SERPER_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "organic": [
                        {"title": "One", "link": "https://a", "snippet": "first"},
                        {"title": "Two", "link": "https://b", "snippet": "second"},
                        {"title": "Three", "link": "https://c", "snippet": "third"},
                    ]
                },
            )
        )
        client = WebSearchClient("serper-key")
        response = await client.search("solar news", count=2)
        await client.aclose()

        request = route.calls.last.request
        assert request.headers["X-API-KEY"] == "serper-key"
        assert json.loads(request.content) == {"q": "solar news", "num": 2}
        assert [r.title for r in response.results] == ["One", "Two"]
        text = response.format()
        assert text.startswith('Web search results for "solar news"')
        assert "1. One\n   https://a\n   first" in text

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_results(self):
        respx.post(SERPER_URL).mock(return_value=httpx.Response(200, json={}))
        client = WebSearchClient("k")
        response = await client.search("nothing")
        await client.aclose()
        assert response.format() == 'Web search for "nothing" returned no results.'

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_raises_search_error(self):
        respx.post(SERPER_URL).mock(return_value=httpx.Response(403, text="bad key"))
        client = WebSearchClient("k")
        with pytest.raises(SearchError, match="403"):
            await client.search("x")
        await client.aclose()
