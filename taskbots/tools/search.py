"""Web search through the Serper API."""

from __future__ import annotations

import httpx
from pydantic import BaseModel, Field

from taskbots.core.logging import get_logger

logger = get_logger("tools.search")

SERPER_URL = "https://google.serper.dev/search"
SEARCH_TIMEOUT_SECONDS = 15.0


class SearchError(Exception):
    """Raised when the search provider call fails."""


class SearchResult(BaseModel):
    title: str = ""
    link: str = ""
    snippet: str = ""


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult] = Field(default_factory=list)

    def format(self) -> str:
        if not self.results:
            return f'Web search for "{self.query}" returned no results.'
        lines = [
            f"{i}. {r.title}\n   {r.link}\n   {r.snippet}"
            for i, r in enumerate(self.results, start=1)
        ]
        return f'Web search results for "{self.query}":\n\n' + "\n\n".join(lines)


def clamp_count(count: int | None, default: int = 5) -> int:
    return max(1, min(10, int(count if count is not None else default)))


class WebSearchClient:
    """Thin async client for Serper.

    Args:
        api_key: Serper API key.
        transport: Optional ``httpx`` transport (tests).
    """

    def __init__(
        self,
        api_key: str,
        url: str = SERPER_URL,
        timeout: float = SEARCH_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(
            headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, query: str, count: int = 5) -> SearchResponse:
        """Return at most ``count`` (clamped to 1..10) organic results."""
        num = clamp_count(count)
        try:
            response = await self._client.post(self._url, json={"q": query, "num": num})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SearchError(
                f"Search failed: {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except httpx.RequestError as exc:
            raise SearchError(f"Search network error: {exc}") from exc

        organic = (response.json() or {}).get("organic") or []
        results = [
            SearchResult(
                title=item.get("title") or "",
                link=item.get("link") or "",
                snippet=item.get("snippet") or "",
            )
            for item in organic[:num]
        ]
        logger.info("web_search | query=%r | results=%d", query, len(results))
        return SearchResponse(query=query, results=results)
