"""Multi-source identification cascade."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from discpipe.error_handling import IdentificationError
from discpipe.identify.base import Identification, IdentificationStrategy
from discpipe.identify.disc import DiscProbe, probe_disc
from discpipe.identify.mount import check_mount
from discpipe.identify.musicbrainz import MusicBrainzClient, apply_music_identity
from discpipe.jobs.models import Job, Track

if TYPE_CHECKING:
    from discpipe.storage.database import JobDatabase

logger = logging.getLogger(__name__)


@dataclass
class IdentifyOutcome:
    """What identification learned beyond the job's own fields."""

    probe: DiscProbe
    accepted: Identification | None = None
    rejected: list[Identification] = field(default_factory=list)
    tracks: list[Track] = field(default_factory=list)

    @property
    def protected(self) -> bool:
        return self.probe.protected


class IdentificationResolver:
    """Mounts and probes the disc, then walks the strategies in order.

    The walk stops at the first confident answer. A strategy that fails for
    network reasons counts as "no answer"; only a mount failure escapes.
    """

    def __init__(
        self,
        strategies: list[IdentificationStrategy],
        *,
        musicbrainz: MusicBrainzClient | None = None,
        db: "JobDatabase | None" = None,
        mount_root: Path = Path("/mnt"),
    ):
        self.strategies = strategies
        self.musicbrainz = musicbrainz
        self.db = db
        self.mount_root = mount_root

    async def identify(self, job: Job) -> IdentifyOutcome:
        logger.info(f"Identifying disc at {job.devpath}")
        loop = asyncio.get_running_loop()

        job.mountpoint = await loop.run_in_executor(
            None,
            check_mount,
            job.devpath,
            self.mount_root,
        )
        probe = await loop.run_in_executor(
            None,
            probe_disc,
            job.devpath,
            Path(job.mountpoint),
        )

        job.disctype = probe.disctype
        job.label = probe.label or job.label
        job.crc_id = probe.crc_id or job.crc_id
        if probe.title:
            job.title = probe.title

        outcome = IdentifyOutcome(probe=probe)
        if job.disctype == "music":
            await self.identify_music(job, outcome)
        else:
            await self.run_cascade(job, outcome)

        job.resolve_identity()
        logger.info(f"Identified: {job.disctype} - {job.title or 'unknown'}")
        return outcome

    async def run_cascade(self, job: Job, outcome: IdentifyOutcome) -> Identification | None:
        for strategy in self.strategies:
            if job.hasnicetitle:
                break
            if not strategy.applies_to(job):
                continue

            try:
                candidate = await strategy.resolve(job)
            except (IdentificationError, httpx.HTTPError) as e:
                logger.warning(f"{strategy.name} lookup failed: {e}")
                continue

            if candidate is None:
                logger.debug(f"{strategy.name}: no result")
                continue
            if not candidate.is_confident:
                logger.info(f"Rejected low-confidence result {candidate}")
                outcome.rejected.append(candidate)
                continue

            logger.info(f"Accepted {candidate}")
            job.apply_auto_identity(**candidate.identity_fields())
            job.hasnicetitle = True
            outcome.accepted = candidate
            return candidate
        return None

    async def identify_music(self, job: Job, outcome: IdentifyOutcome) -> None:
        if self.musicbrainz is None or not job.crc_id:
            logger.info("No MusicBrainz lookup possible for this disc")
            return

        result = await self.musicbrainz.identify(job.crc_id)
        if result is None:
            return

        identification, tracks = result
        apply_music_identity(job, identification)
        outcome.accepted = identification

        for track in tracks:
            track.job_id = job.job_id
            if self.db is not None and job.job_id is not None:
                self.db.add_track(track)
        outcome.tracks = tracks
        logger.info(f"Registered {len(tracks)} tracks from MusicBrainz")
