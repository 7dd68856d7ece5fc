"""LeetCode GraphQL client (solve totals, contest rating, submission calendar)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from coarc.platforms.codeforces import PlatformError

logger = logging.getLogger(__name__)

USER_STATS_QUERY = """
query userStats($username: String!) {
  matchedUser(username: $username) {
    submitStats { acSubmissionNum { difficulty count } }
    submissionCalendar
  }
  userContestRanking(username: $username) { rating }
}
"""


@dataclass(frozen=True)
class LcUserStats:
    handle: str
    easy_solved: int = 0
    medium_solved: int = 0
    hard_solved: int = 0
    contest_rating: int | None = None
    # Unix timestamp of a UTC day -> submissions that day
    calendar: dict[int, int] = field(default_factory=dict)

    @property
    def total_solved(self) -> int:
        return self.easy_solved + self.medium_solved + self.hard_solved


class LcStatsSource(Protocol):
    """What the LeetCode sync job needs from the platform."""

    async def fetch_stats(self, handle: str) -> LcUserStats: ...


def parse_user_stats(handle: str, data: dict[str, Any]) -> LcUserStats:
    user = data.get("matchedUser")
    if not user:
        raise PlatformError(f'LeetCode user "{handle}" not found')

    counts = {
        entry["difficulty"]: int(entry["count"])
        for entry in (user.get("submitStats") or {}).get("acSubmissionNum") or []
    }

    calendar: dict[int, int] = {}
    raw_calendar = user.get("submissionCalendar")
    if raw_calendar:
        try:
            calendar = {int(ts): int(n) for ts, n in json.loads(raw_calendar).items()}
        except (TypeError, ValueError):
            logger.warning("Unreadable LeetCode submission calendar for %s", handle)

    ranking = data.get("userContestRanking") or {}
    rating = ranking.get("rating")
    return LcUserStats(
        handle=handle,
        easy_solved=counts.get("Easy", 0),
        medium_solved=counts.get("Medium", 0),
        hard_solved=counts.get("Hard", 0),
        contest_rating=round(rating) if rating is not None else None,
        calendar=calendar,
    )


class LeetCodeClient:
    """Thin async client over the public LeetCode GraphQL endpoint."""

    def __init__(
        self,
        graphql_url: str = "https://leetcode.com/graphql",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = graphql_url
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={"Referer": "https://leetcode.com", "Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_stats(self, handle: str) -> LcUserStats:
        client = await self._get_client()
        try:
            response = await client.post(
                self._url, json={"query": USER_STATS_QUERY, "variables": {"username": handle}}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise PlatformError(f"LeetCode stats failed for {handle}: {exc}") from exc
        except ValueError as exc:
            raise PlatformError("LeetCode returned invalid JSON") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise PlatformError(f"Unexpected LeetCode payload for {handle}")
        try:
            return parse_user_stats(handle, data)
        except (KeyError, TypeError, ValueError) as exc:
            raise PlatformError(f"Unexpected LeetCode payload for {handle}") from exc
