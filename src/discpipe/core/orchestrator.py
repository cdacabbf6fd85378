"""Job pipeline: identify, rip, transcode, relocate, notify."""

import asyncio
import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from discpipe.core.context import RunContext
from discpipe.encode.base import EncodeResult
from discpipe.error_handling import (
    ConfigurationError,
    DiscPipeError,
    ExtractionError,
    ToolError,
    TranscodeError,
)
from discpipe.jobs.models import VIDEO_DISC_TYPES, Job, Track
from discpipe.jobs.state import JobStatus
from discpipe.organize.library import (
    clean_for_filename,
    delete_raw_files,
    fix_job_title,
    set_permissions,
)
from discpipe.tools.makemkv import BACKUP_METHODS, DiscTitle, select_main_feature

logger = logging.getLogger(__name__)

UNKNOWN_DISC_ERROR = "Unknown disc type"


def rip_with_mkv(job: Job, protected: bool) -> bool:
    """Whether MakeMKV has to run before anything reads the titles."""
    config = job.config
    if protected:
        return True
    if config is None:
        return False
    return config.rip_method in (*BACKUP_METHODS, "mkv")


@dataclass
class TranscodeTask:
    source: Path | str
    destination: Path
    title: int | None = None
    main_feature: bool = False


class PipelineOrchestrator:
    """Drives one disc from insertion to a terminal status.

    Every exception raised below :meth:`run` is caught there exactly once.
    The completion notification is sent whatever happened.
    """

    def __init__(
        self,
        ctx: RunContext,
        on_job_created: Callable[[Job], None] | None = None,
    ):
        self.ctx = ctx
        self.config = ctx.config
        self.on_job_created = on_job_created

    # -- entry point ---------------------------------------------------

    async def run(self, devpath: str) -> Job:
        job = self.create_job(devpath)
        try:
            outcome = await self.ctx.resolver.identify(job)
            self._save(job)
            self.check_duplicate(job)

            if job.disctype in VIDEO_DISC_TYPES:
                await self.rip_visual_media(job, protected=outcome.protected)
            elif job.disctype == "music":
                await self.rip_music(job)
            elif job.disctype == "data":
                await self.rip_data(job)
            else:
                self.fail_unknown(job)
        except Exception as e:
            await self.handle_failure(job, e)
        finally:
            self._save(job)
            await self.notify_exit(job)
            await self.eject(job)
        return job

    def create_job(self, devpath: str) -> Job:
        job = Job(devpath, config=self.config, pid=os.getpid())
        job.config_id = self.ctx.db.save_config_snapshot(self.config)
        self.ctx.db.add_job(job)
        if self.on_job_created is not None:
            self.on_job_created(job)
            self._save(job)
        logger.info(f"Starting job {job.job_id} for {devpath}")
        return job

    def check_duplicate(self, job: Job) -> None:
        """Record an earlier successful rip of the same disc. Not enforced."""
        duplicate = self.ctx.db.find_successful_duplicate(job)
        if duplicate is not None:
            job.advisory.duplicate_job_id = duplicate.job_id
            logger.info(
                f"Disc was already ripped successfully by job {duplicate.job_id} "
                f"({duplicate.title or duplicate.label})",
            )

    # -- video ---------------------------------------------------------

    async def rip_visual_media(self, job: Job, *, protected: bool) -> None:
        config = self.config
        needs_rip = rip_with_mkv(job, protected)
        if not needs_rip and config.skip_transcode:
            msg = "Both extraction and transcoding are disabled for this disc"
            raise ConfigurationError(
                msg,
                solution="Enable a MakeMKV rip method or turn off skip_transcode",
            )

        name = self._work_name(job)
        raw_dir = config.raw_dir / name
        tracks: list[Track] = []
        ripped: list[Path] = []
        main_title: DiscTitle | None = None

        if needs_rip:
            self._transition(job, JobStatus.RIPPING, stage="ripping")
            tracks, main_title = await self.register_titles(job)
            ripped = await self.extract(job, raw_dir, main_title)
            self._mark_ripped(tracks, ripped)

        if config.skip_transcode:
            outputs = ripped
            main_output = ripped[0] if main_title is not None and len(ripped) == 1 else None
        else:
            self._transition(job, JobStatus.TRANSCODING, stage="transcoding")
            await self.advise_transcode(job)
            tasks = self.plan_transcodes(job, raw_dir if needs_rip else None, ripped, tracks)
            results = await self.transcode_all(tasks, job.disctype)
            outputs = [r.output_file for r in results]
            main_output = (
                outputs[0]
                if len(outputs) == 1 and (main_title is not None or tasks[0].main_feature)
                else None
            )

        self._save(job)
        job.stage = "relocating"
        loop = asyncio.get_running_loop()
        target_dir, _ = await loop.run_in_executor(
            None,
            lambda: self.ctx.library.relocate(job, outputs, tracks, main_feature=main_output),
        )
        for track in tracks:
            self.ctx.db.update_track(track)

        await self.ctx.library.scan_emby()
        await loop.run_in_executor(None, self.ctx.library.scan_plex)
        set_permissions(target_dir)

        if needs_rip and not config.skip_transcode:
            delete_raw_files([raw_dir])

        self._transition(job, JobStatus.SUCCESS, stage="complete")

    async def register_titles(self, job: Job) -> tuple[list[Track], DiscTitle | None]:
        """Scan titles, store one Track per title and pick the main feature."""
        config = self.config
        loop = asyncio.get_running_loop()
        count, titles = await loop.run_in_executor(None, self.ctx.makemkv.info, job.devpath)
        job.no_of_titles = count

        main_title = None
        if config.main_feature and config.rip_method not in BACKUP_METHODS:
            main_title = select_main_feature(titles, config.min_length, config.max_length)
            if main_title is None:
                msg = (
                    f"No title between {config.min_length}s and {config.max_length}s "
                    "to rip as the main feature"
                )
                raise ExtractionError("makemkvcon", message=msg)
            logger.info(f"Main feature: {main_title}")

        tracks = []
        for title in titles:
            track = Track(
                job_id=job.job_id,
                track_number=title.index,
                length=title.duration,
                aspect_ratio=title.aspect_ratio,
                fps=title.fps,
                main_feature=main_title is not None and title.index == main_title.index,
                basename=title.name,
                filename=title.filename,
                orig_filename=title.filename,
                process=config.min_length <= title.duration <= config.max_length,
                source="makemkv",
            )
            if main_title is not None:
                track.process = track.main_feature
            tracks.append(self.ctx.db.add_track(track))
        self._save(job)
        return tracks, main_title

    async def extract(self, job: Job, raw_dir: Path, main_title: DiscTitle | None) -> list[Path]:
        """Run MakeMKV and return the files it produced."""
        makemkv = self.ctx.makemkv
        loop = asyncio.get_running_loop()
        if main_title is not None:
            await loop.run_in_executor(
                None,
                lambda: makemkv.mkv(job.devpath, raw_dir, main_title.index),
            )
        else:
            await loop.run_in_executor(None, makemkv.rip, job.devpath, raw_dir)

        if self.config.rip_method in BACKUP_METHODS:
            # A backup is a disc image, read like the disc itself
            return [raw_dir]

        files = sorted(raw_dir.glob("*.mkv"))
        if not files:
            msg = f"MakeMKV produced no files in {raw_dir}"
            raise ExtractionError("makemkvcon", message=msg)
        logger.info(f"MakeMKV produced {len(files)} files")
        return files

    def plan_transcodes(
        self,
        job: Job,
        raw_dir: Path | None,
        ripped: list[Path],
        tracks: list[Track],
    ) -> list[TranscodeTask]:
        transcoder = self.ctx.transcoder
        out_dir = self.config.transcode_dir / self._work_name(job)
        ext = transcoder.settings_for(job.disctype).ext.lstrip(".")

        mkv_files = [p for p in ripped if p.is_file()]
        if mkv_files:
            return [
                TranscodeTask(source, transcoder.output_path(source, out_dir, job.disctype))
                for source in mkv_files
            ]

        # Read titles straight from the disc or from a backup image
        if not transcoder.reads_disc:
            raise TranscodeError(
                transcoder.name,
                message=f"{transcoder.name} cannot read titles from a disc or backup image",
                solution="Use rip_method = \"mkv\" or switch to HandBrakeCLI",
                recoverable=False,
            )
        source: Path | str = raw_dir if raw_dir is not None else job.devpath
        wanted = [t for t in tracks if t.process]
        if self.config.main_feature or not wanted:
            name = clean_for_filename(fix_job_title(job)) or "main_feature"
            return [TranscodeTask(source, out_dir / f"{name}.{ext}", main_feature=True)]
        return [
            TranscodeTask(
                source,
                out_dir / f"title_{t.track_number + 1:02d}.{ext}",
                title=t.track_number + 1,
            )
            for t in wanted
        ]

    async def transcode_all(self, tasks: list[TranscodeTask], disctype: str) -> list[EncodeResult]:
        """Run every task, at most ``max_concurrent_transcodes`` at a time.

        All tasks are attempted. Any failure raises TranscodeError afterwards.
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrent_transcodes)
        loop = asyncio.get_running_loop()
        transcoder = self.ctx.transcoder

        async def _one(task: TranscodeTask) -> EncodeResult:
            async with semaphore:
                return await loop.run_in_executor(
                    None,
                    lambda: transcoder.transcode(
                        task.source,
                        task.destination,
                        disctype,
                        title=task.title,
                        main_feature=task.main_feature,
                    ),
                )

        outcomes = await asyncio.gather(
            *(_one(task) for task in tasks),
            return_exceptions=True,
        )

        results: list[EncodeResult] = []
        failures: list[str] = []
        for task, outcome in zip(tasks, outcomes, strict=True):
            if isinstance(outcome, EncodeResult):
                results.append(outcome)
            elif isinstance(outcome, DiscPipeError):
                failures.append(outcome.message)
            elif isinstance(outcome, Exception):
                failures.append(f"{task.source}: {outcome}")
            else:
                raise outcome

        if failures:
            raise TranscodeError(
                transcoder.name,
                message=f"{len(failures)} of {len(tasks)} transcodes failed",
                details="\n".join(failures),
            )
        return results

    async def advise_transcode(self, job: Job) -> None:
        if not self.config.ai_transcode_advice:
            return
        preset = self.ctx.transcoder.settings_for(job.disctype).preset
        advice = await self.ctx.agent.recommend_transcode_settings(job, preset)
        if advice:
            job.advisory.transcode_recommendation = advice
            logger.info(
                f"AI transcode recommendation: preset={advice.get('preset')!r} "
                f"args={advice.get('args')!r} ({advice.get('reasoning', '')})",
            )

    # -- music and data ------------------------------------------------

    async def rip_music(self, job: Job) -> None:
        self._transition(job, JobStatus.RIPPING, stage="ripping")
        cmd = [self.config.abcde_binary, "-d", job.devpath, "-o", "flac", "-N"]
        try:
            await self.ctx.runner.run_async(cmd, strict=True, timeout=self.config.tool_timeout)
        except ToolError as e:
            raise ExtractionError(
                "abcde",
                message="abcde could not rip the audio disc",
                details=e.details,
                original_error=e,
            ) from e
        self._transition(job, JobStatus.SUCCESS, stage="complete")

    async def rip_data(self, job: Job) -> None:
        self._transition(job, JobStatus.RIPPING, stage="ripping")
        loop = asyncio.get_running_loop()
        try:
            target = await loop.run_in_executor(None, self.ctx.library.rip_data, job)
        except (OSError, shutil.Error) as e:
            raise ExtractionError(
                "copy",
                message=f"Could not copy data disc from {job.mountpoint}",
                details=str(e),
                original_error=e,
            ) from e
        set_permissions(target)
        self._transition(job, JobStatus.SUCCESS, stage="complete")

    def fail_unknown(self, job: Job) -> None:
        job.add_error(UNKNOWN_DISC_ERROR)
        self._transition(job, JobStatus.FAIL, stage="failed")

    # -- failure, notification, eject ----------------------------------

    async def handle_failure(self, job: Job, error: Exception) -> None:
        if isinstance(error, ExtractionError) and job.status == JobStatus.RIPPING:
            self._transition(job, JobStatus.RIPPING_FAIL)
        elif isinstance(error, TranscodeError) and job.status == JobStatus.TRANSCODING:
            self._transition(job, JobStatus.TRANSCODING_FAIL)

        if isinstance(error, DiscPipeError):
            logger.log(error.log_level, f"Job {job.job_id} failed: {error.message}")
            message = error.message
            details = error.details or ""
        else:
            logger.exception(f"Job {job.job_id} failed")
            message = str(error) or type(error).__name__
            details = ""
        job.add_error(message)

        if self.config.ai_error_diagnosis:
            diagnosis = await self.ctx.agent.diagnose_error(
                job,
                f"{message}\n{details}".strip(),
            )
            if diagnosis:
                job.advisory.error_diagnosis = diagnosis
                logger.info(f"AI diagnosis: {diagnosis.get('diagnosis', '')}")

        if not job.is_finished:
            self._transition(job, JobStatus.FAIL, stage="failed")

    def exit_message(self, job: Job) -> tuple[str, str]:
        name = job.title or job.label or job.devpath
        outcome = (
            "completed successfully"
            if job.status == JobStatus.SUCCESS
            else "completed with errors"
        )
        title = f"{self.config.notify_title_prefix}: {name} {outcome}"
        lines = [
            f"Disc: {name}",
            f"Type: {job.disctype}",
            f"Status: {job.status.value}",
        ]
        if job.errors:
            lines.append(f"Errors: {job.errors}")
        diagnosis = job.advisory.error_diagnosis
        if diagnosis:
            lines.append(f"Diagnosis: {diagnosis.get('diagnosis', '')}")
            if diagnosis.get("suggestion"):
                lines.append(f"Suggestion: {diagnosis['suggestion']}")
        return title, "\n".join(lines)

    async def notify_exit(self, job: Job) -> list[str]:
        title, body = self.exit_message(job)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            self.ctx.notifier.notify,
            job,
            title,
            body,
        )

    async def eject(self, job: Job) -> None:
        if not self.config.auto_eject:
            return
        await self.ctx.runner.run_async(
            ["eject", job.devpath],
            timeout=self.config.eject_timeout,
        )

    # -- helpers -------------------------------------------------------

    def _transition(self, job: Job, target: JobStatus, stage: str | None = None) -> None:
        job.transition_to(target)
        if stage:
            job.stage = stage
        self._save(job)

    def _save(self, job: Job) -> None:
        self.ctx.db.update_job(job)

    def _work_name(self, job: Job) -> str:
        name = clean_for_filename(job.title or job.label) or "unknown"
        return f"{name}_{job.job_id}"

    def _mark_ripped(self, tracks: list[Track], ripped: list[Path]) -> None:
        names = {p.name for p in ripped}
        for track in tracks:
            if track.filename and track.filename in names:
                track.ripped = True
                self.ctx.db.update_track(track)
