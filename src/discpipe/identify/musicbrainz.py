"""MusicBrainz disc lookup and Cover Art Archive."""

import logging
from typing import Any

import httpx

from discpipe import __version__
from discpipe.identify.base import Identification
from discpipe.jobs.models import Job, Track

logger = logging.getLogger(__name__)

MB_BASE_URL = "https://musicbrainz.org/ws/2"
COVER_ART_URL = "https://coverartarchive.org/release"
USER_AGENT = f"discpipe/{__version__}"


class MusicBrainzClient:
    """Looks up audio CDs by MusicBrainz disc id."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def _get_json(self, url: str, **params: str) -> dict[str, Any] | None:
        try:
            response = await self.client.get(
                url,
                params=params or None,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"{url} returned {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Request to {url} failed: {e}")
        except ValueError as e:
            logger.warning(f"{url} returned invalid JSON: {e}")
        return None

    async def disc_info(self, disc_id: str) -> dict[str, Any] | None:
        return await self._get_json(
            f"{MB_BASE_URL}/discid/{disc_id}",
            fmt="json",
            inc="recordings+artists",
        )

    async def cover_art(self, mbid: str) -> str:
        data = await self._get_json(f"{COVER_ART_URL}/{mbid}")
        images = (data or {}).get("images") or []
        return images[0].get("image", "") if images else ""

    async def identify(self, disc_id: str) -> tuple[Identification, list[Track]] | None:
        """Resolve a disc id into an identity plus one track per disc track."""
        if not disc_id:
            return None
        info = await self.disc_info(disc_id)
        releases = (info or {}).get("releases") or []
        if not releases:
            logger.info(f"MusicBrainz has no release for disc {disc_id}")
            return None

        release = releases[0]
        credits = release.get("artist-credit") or []
        artist = credits[0].get("name", "") if credits else ""
        identification = Identification(
            title=release.get("title", ""),
            year=(release.get("date") or "")[:4],
            video_type="music",
            source="music_brainz",
            extra={"artist": artist, "mbid": release.get("id", "")},
        )
        if release.get("id"):
            identification.poster_url = await self.cover_art(release["id"])

        media = release.get("media") or []
        tracks = []
        for number, mb_track in enumerate((media[0].get("tracks") or []) if media else [], start=1):
            recording = mb_track.get("recording") or {}
            length = recording.get("length") or mb_track.get("length") or 0
            tracks.append(
                Track(
                    job_id=None,
                    track_number=number,
                    length=int(length) // 1000,
                    basename=recording.get("title") or mb_track.get("title", ""),
                    source="music_brainz",
                ),
            )
        return identification, tracks


def apply_music_identity(job: Job, identification: Identification) -> None:
    job.apply_auto_identity(
        title=identification.title,
        year=identification.year,
        poster_url=identification.poster_url,
    )
    job.advisory.artist = identification.extra.get("artist") or None
    if identification.title:
        job.hasnicetitle = True
