"""Tests for the identification cascade."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest

from discpipe.error_handling import IdentificationError, MountError
from discpipe.identify.base import Identification, IdentificationStrategy
from discpipe.identify.disc import DiscProbe
from discpipe.identify.providers import OMDbClient, OMDbStrategy
from discpipe.identify.resolver import IdentificationResolver, IdentifyOutcome
from discpipe.jobs.models import Job, Track


class FakeStrategy(IdentificationStrategy):
    def __init__(self, name, result=None, error=None, applies=True):
        self.name = name
        self.result = result
        self.error = error
        self.applies = applies
        self.calls = 0

    def applies_to(self, job):
        return self.applies

    async def resolve(self, job):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


def ident(title, confidence=1.0, source="fake"):
    return Identification(title=title, source=source, year="1995", video_type="movie", confidence=confidence)


def dvd_job():
    return Job("/dev/sr0", disctype="dvd", label="HEAT")


class TestCascade:
    @pytest.mark.asyncio
    async def test_stops_at_first_confident_answer(self):
        first = FakeStrategy("first", ident("Heat"))
        second = FakeStrategy("second", ident("Other"))
        job = dvd_job()
        outcome = IdentifyOutcome(probe=DiscProbe("dvd"))

        accepted = await IdentificationResolver([first, second]).run_cascade(job, outcome)

        assert accepted.title == "Heat"
        assert second.calls == 0
        assert job.title == "Heat"
        assert job.title_auto == "Heat"
        assert job.year == "1995"
        assert job.hasnicetitle

    @pytest.mark.asyncio
    async def test_low_confidence_is_rejected(self):
        unsure = FakeStrategy("unsure", ident("Hot", confidence=0.49))
        sure = FakeStrategy("sure", ident("Heat", confidence=0.5))
        job = dvd_job()
        outcome = IdentifyOutcome(probe=DiscProbe("dvd"))

        await IdentificationResolver([unsure, sure]).run_cascade(job, outcome)

        assert [r.title for r in outcome.rejected] == ["Hot"]
        assert outcome.accepted.title == "Heat"
        assert job.title == "Heat"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [IdentificationError("omdb", "down"), httpx.ConnectError("refused")],
    )
    async def test_lookup_failure_counts_as_no_answer(self, error):
        broken = FakeStrategy("broken", error=error)
        working = FakeStrategy("working", ident("Heat"))
        job = dvd_job()

        await IdentificationResolver([broken, working]).run_cascade(
            job,
            IdentifyOutcome(probe=DiscProbe("dvd")),
        )

        assert broken.calls == 1
        assert job.title == "Heat"

    @pytest.mark.asyncio
    async def test_omdb_outage_falls_through_to_next_source(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        working = FakeStrategy("working", ident("Heat"))
        job = Job("/dev/sr0", disctype="dvd", label="HEAT", title="Heat")

        async with httpx.AsyncClient(transport=transport) as client:
            accepted = await IdentificationResolver(
                [OMDbStrategy(OMDbClient("k", client)), working],
            ).run_cascade(job, IdentifyOutcome(probe=DiscProbe("dvd")))

        assert accepted.source == "fake"
        assert working.calls == 1
        assert job.hasnicetitle

    @pytest.mark.asyncio
    async def test_nothing_found_leaves_job_untitled(self):
        job = dvd_job()
        result = await IdentificationResolver(
            [FakeStrategy("a"), FakeStrategy("b", applies=False)],
        ).run_cascade(job, IdentifyOutcome(probe=DiscProbe("dvd")))
        assert result is None
        assert not job.hasnicetitle
        assert job.title == ""

    @pytest.mark.asyncio
    async def test_manual_title_wins(self):
        job = dvd_job()
        job.apply_manual_identity(title="Heat (Director's Cut)")
        await IdentificationResolver([FakeStrategy("a", ident("Heat"))]).run_cascade(
            job,
            IdentifyOutcome(probe=DiscProbe("dvd")),
        )
        assert job.title == "Heat (Director's Cut)"


class TestIdentify:
    @pytest.mark.asyncio
    async def test_video_disc(self):
        probe = DiscProbe("bluray", label="HEAT", title="Heat", crc_id="abc", protected=True)
        strategy = FakeStrategy("s", ident("Heat"))
        job = Job("/dev/sr0")
        with (
            patch("discpipe.identify.resolver.check_mount", return_value="/mnt/dev/sr0"),
            patch("discpipe.identify.resolver.probe_disc", return_value=probe) as probe_disc,
        ):
            outcome = await IdentificationResolver([strategy]).identify(job)

        probe_disc.assert_called_once_with("/dev/sr0", Path("/mnt/dev/sr0"))
        assert outcome.protected
        assert job.mountpoint == "/mnt/dev/sr0"
        assert job.disctype == "bluray"
        assert job.crc_id == "abc"
        assert job.label == "HEAT"
        assert job.hasnicetitle

    @pytest.mark.asyncio
    async def test_mount_failure_propagates(self):
        with (
            patch("discpipe.identify.resolver.check_mount", side_effect=MountError("no disc")),
            pytest.raises(MountError),
        ):
            await IdentificationResolver([]).identify(Job("/dev/sr0"))

    @pytest.mark.asyncio
    async def test_music_disc_uses_musicbrainz(self):
        probe = DiscProbe("music", crc_id="disc-id-")
        musicbrainz = AsyncMock()
        musicbrainz.identify.return_value = (
            Identification(title="Kind of Blue", source="music_brainz", extra={"artist": "Miles Davis"}),
            [Track(job_id=None, track_number=1, length=562)],
        )
        db = Mock()
        strategy = FakeStrategy("never", ident("Wrong"))
        job = Job("/dev/sr0", job_id=4)

        with (
            patch("discpipe.identify.resolver.check_mount", return_value="/mnt/dev/sr0"),
            patch("discpipe.identify.resolver.probe_disc", return_value=probe),
        ):
            outcome = await IdentificationResolver([strategy], musicbrainz=musicbrainz, db=db).identify(job)

        musicbrainz.identify.assert_awaited_once_with("disc-id-")
        assert strategy.calls == 0
        assert job.title == "Kind of Blue"
        assert outcome.tracks[0].job_id == 4
        db.add_track.assert_called_once()
