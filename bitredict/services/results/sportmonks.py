"""SportMonks results feed.

Thin async client for the one thing the backend needs from the sports-data
provider: 90-minute final scores for finished fixtures.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx
import structlog

from bitredict.config import Settings, get_settings
from bitredict.errors import TransientRpcError, ValidationError
from bitredict.services.results.rate_limiter import RequestLimiter, build_limiter

logger = structlog.get_logger(__name__)

FINISHED_STATES = {"FT", "AET", "FT_PEN"}
EXTRA_TIME_STATES = {"AET", "FT_PEN"}
MAX_IDS_PER_REQUEST = 50


@dataclass
class FinalScore:
    fixture_id: int
    home_score: int
    away_score: int
    state: str
    finished_at: datetime | None = None


class ResultsFeed(Protocol):
    async def fetch_final_scores(self, fixture_ids: list[int]) -> list[FinalScore]: ...


def _scores_by_description(scores: list[dict[str, Any]], description: str) -> tuple[int | None, int | None]:
    home = away = None
    for item in scores or []:
        if item.get("description") != description:
            continue
        score = item.get("score") or {}
        if score.get("goals") is None:
            continue
        if score.get("participant") == "home":
            home = int(score["goals"])
        elif score.get("participant") == "away":
            away = int(score["goals"])
    return home, away


def parse_final_score(fixture: dict[str, Any]) -> FinalScore | None:
    """
    Extract the 90-minute score of a finished fixture.

    Extra-time and penalty matches use 1ST_HALF + 2ND_HALF; CURRENT would
    include extra time. Returns None when the fixture is not finished or the
    needed scores are missing.
    """
    state = ((fixture.get("state") or {}).get("state") or "").upper()
    if state not in FINISHED_STATES:
        return None

    scores = fixture.get("scores") or []
    if state in EXTRA_TIME_STATES:
        first_home, first_away = _scores_by_description(scores, "1ST_HALF")
        second_home, second_away = _scores_by_description(scores, "2ND_HALF")
        if None in (first_home, first_away, second_home, second_away):
            logger.warning("extra_time_scores_incomplete", fixture_id=fixture.get("id"), state=state)
            return None
        home, away = first_home + second_home, first_away + second_away
    else:
        home, away = _scores_by_description(scores, "CURRENT")
        if home is None or away is None:
            logger.warning("final_score_missing", fixture_id=fixture.get("id"), state=state)
            return None

    finished_at = None
    if fixture.get("starting_at_timestamp"):
        finished_at = datetime.fromtimestamp(int(fixture["starting_at_timestamp"]), tz=timezone.utc)
    return FinalScore(
        fixture_id=int(fixture["id"]),
        home_score=home,
        away_score=away,
        state=state,
        finished_at=finished_at,
    )


class SportMonksFeed:
    """
    SportMonks v3 football client.

    Supports:
    - Per-endpoint minimum interval between requests, shared through Redis when REDIS_URL is set
    - Retry with exponential backoff on timeouts, 429 and 5xx
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        limiter: RequestLimiter | None = None,
    ):
        self.settings = settings or get_settings()
        self._owns_limiter = limiter is None
        self.limiter = limiter or build_limiter(self.settings)
        self._http_client = http_client

    async def __aenter__(self) -> "SportMonksFeed":
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        redis_client = getattr(self.limiter, "redis", None)
        if self._owns_limiter and redis_client is not None:
            await redis_client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def _request(self, endpoint: str, path: str, params: dict[str, Any], max_retries: int = 3) -> Any:
        if not self.settings.sportmonks_api_token:
            raise ValidationError("SPORTMONKS_API_TOKEN is not configured")
        url = f"{self.settings.sportmonks_base_url.rstrip('/')}/{path.lstrip('/')}"
        params = {**params, "api_token": self.settings.sportmonks_api_token}

        for attempt in range(max_retries + 1):
            await self.limiter.wait_if_needed(endpoint)
            try:
                client = await self._get_client()
                response = await client.get(url, params=params)
                response.raise_for_status()
                return response.json()
            except httpx.TimeoutException as e:
                if attempt < max_retries:
                    wait_time = 2**attempt
                    logger.warning("timeout_retrying", endpoint=endpoint, attempt=attempt, wait_time=wait_time)
                    await asyncio.sleep(wait_time)
                    continue
                raise TransientRpcError(f"SportMonks {endpoint} timed out") from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if (status == 429 or status >= 500) and attempt < max_retries:
                    wait_time = 2**attempt
                    logger.warning(
                        "feed_error_retrying",
                        endpoint=endpoint,
                        status_code=status,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue
                if status == 429 or status >= 500:
                    raise TransientRpcError(f"SportMonks {endpoint} failed with {status}") from e
                raise ValidationError(
                    f"SportMonks {endpoint} rejected the request: {status}",
                    details={"status_code": status, "body": e.response.text[:200]},
                ) from e
            except httpx.TransportError as e:
                if attempt < max_retries:
                    await asyncio.sleep(2**attempt)
                    continue
                raise TransientRpcError(f"SportMonks {endpoint} connection error: {e}") from e

    async def fetch_final_scores(self, fixture_ids: list[int]) -> list[FinalScore]:
        """Final scores for those of ``fixture_ids`` that have finished."""
        scores: list[FinalScore] = []
        for i in range(0, len(fixture_ids), MAX_IDS_PER_REQUEST):
            batch = fixture_ids[i : i + MAX_IDS_PER_REQUEST]
            data = await self._request(
                "fixtures_multi",
                f"fixtures/multi/{','.join(str(fid) for fid in batch)}",
                {"include": "scores;state"},
            )
            for fixture in (data or {}).get("data") or []:
                score = parse_final_score(fixture)
                if score is not None:
                    scores.append(score)

        logger.info("final_scores_fetched", requested=len(fixture_ids), finished=len(scores))
        return scores
