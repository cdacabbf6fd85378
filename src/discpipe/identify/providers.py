"""OMDb and TMDB metadata lookups."""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from discpipe.error_handling import IdentificationError
from discpipe.identify.base import (
    CONFIDENCE_THRESHOLD,
    Identification,
    IdentificationStrategy,
)
from discpipe.jobs.models import Job

if TYPE_CHECKING:
    from discpipe.identify.ai import AIAgent

logger = logging.getLogger(__name__)

OMDB_URL = "http://www.omdbapi.com/"
TMDB_BASE_URL = "https://api.themoviedb.org/3"
TMDB_POSTER_BASE = "https://image.tmdb.org/t/p/original"


class OMDbClient:
    """Client for the OMDb API."""

    def __init__(self, api_key: str, client: httpx.AsyncClient):
        self.api_key = api_key
        self.client = client

    async def search(self, title: str, year: str | None = None) -> dict[str, Any] | None:
        """Best match for ``title``, or None when OMDb has nothing.

        Raises IdentificationError when OMDb cannot be reached or answers badly.
        """
        params = {"t": title, "apikey": self.api_key}
        if year:
            params["y"] = str(year)

        try:
            response = await self.client.get(OMDB_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.RequestError as e:
            raise IdentificationError("omdb", f"request failed: {e}", original_error=e) from e
        except httpx.HTTPStatusError as e:
            msg = f"error {e.response.status_code}"
            raise IdentificationError("omdb", msg, original_error=e) from e
        except ValueError as e:
            raise IdentificationError("omdb", f"invalid JSON: {e}", original_error=e) from e

        if data.get("Response") != "True":
            logger.debug(f"OMDb has no match for {title!r}: {data.get('Error')}")
            return None
        return data


class TMDBClient:
    """Client for the TMDB movie search."""

    def __init__(self, api_key: str, client: httpx.AsyncClient, language: str = "en-US"):
        self.api_key = api_key
        self.client = client
        self.language = language

    async def search_movie(self, title: str, year: str | None = None) -> list[dict]:
        params = {"query": title, "api_key": self.api_key, "language": self.language}
        if year:
            params["year"] = str(year)

        try:
            response = await self.client.get(f"{TMDB_BASE_URL}/search/movie", params=params)
            response.raise_for_status()
            return list(response.json().get("results", []))
        except httpx.RequestError as e:
            raise IdentificationError("tmdb", f"request failed: {e}", original_error=e) from e
        except httpx.HTTPStatusError as e:
            msg = f"API error {e.response.status_code}"
            raise IdentificationError("tmdb", msg, original_error=e) from e
        except ValueError as e:
            raise IdentificationError("tmdb", f"invalid JSON: {e}", original_error=e) from e


class OMDbStrategy(IdentificationStrategy):
    name = "omdb"

    def __init__(self, client: OMDbClient):
        self.client = client

    def applies_to(self, job: Job) -> bool:
        return job.is_video and bool(job.title) and not job.hasnicetitle

    async def resolve(self, job: Job) -> Identification | None:
        data = await self.client.search(job.title, job.year or None)
        if not data:
            return None
        poster = data.get("Poster") or ""
        return Identification(
            title=data.get("Title") or job.title,
            year=(data.get("Year") or job.year or "")[:4],
            video_type="series" if data.get("Type") == "series" else "movie",
            imdb_id=data.get("imdbID") or "",
            poster_url="" if poster == "N/A" else poster,
            source=self.name,
        )


class TMDBStrategy(IdentificationStrategy):
    """First TMDB movie hit, or the AI agent's pick when there are several."""

    name = "tmdb"

    def __init__(self, client: TMDBClient, agent: "AIAgent | None" = None):
        self.client = client
        self.agent = agent

    def applies_to(self, job: Job) -> bool:
        return job.is_video and bool(job.title) and not job.hasnicetitle

    async def resolve(self, job: Job) -> Identification | None:
        results = await self.client.search_movie(job.title, job.year or None)
        if not results:
            return None
        result = await self._pick(job, results)
        poster_path = result.get("poster_path")
        return Identification(
            title=result.get("title") or job.title,
            year=(result.get("release_date") or "")[:4],
            video_type="movie",
            poster_url=f"{TMDB_POSTER_BASE}{poster_path}" if poster_path else "",
            source=self.name,
            extra={"tmdb_id": result.get("id")},
        )

    async def _pick(self, job: Job, results: list[dict]) -> dict:
        if self.agent is None or len(results) < 2:
            return results[0]

        candidates = [
            {
                "title": r.get("title", ""),
                "year": (r.get("release_date") or "")[:4],
                "type": "movie",
                "index": i,
            }
            for i, r in enumerate(results[:10])
        ]
        choice = await self.agent.resolve_ambiguous_results(job.label or job.title, candidates)
        if choice and float(choice.get("confidence") or 0) >= CONFIDENCE_THRESHOLD:
            logger.info(f"AI agent picked TMDB result {choice['title']!r}")
            return results[choice["index"]]
        return results[0]
