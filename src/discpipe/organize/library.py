"""Library relocation, permissions and library server rescans."""

import fcntl
import hashlib
import logging
import os
import re
import shutil
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from plexapi.exceptions import PlexApiException
from plexapi.server import PlexServer

from discpipe.error_handling import RelocationError

if TYPE_CHECKING:
    from discpipe.config import JobConfig
    from discpipe.jobs.models import Job, Track

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*]')
_VIDEO_TYPE_DIRS = {"movie": "movies", "series": "tv", "tv show": "tv"}


def clean_for_filename(value: str | None) -> str:
    """Strip characters that are unsafe in paths and collapse whitespace."""
    if not value:
        return ""
    return " ".join(_UNSAFE_CHARS.sub("", value).split())


def convert_job_type(video_type: str | None) -> str:
    """Route a video type to its library directory."""
    if not video_type:
        return ""
    return _VIDEO_TYPE_DIRS.get(video_type.lower(), video_type)


def fix_job_title(job: "Job") -> str:
    """Display title: ``Title (Year)`` when the year is known."""
    title = job.title or "unknown"
    if job.year:
        title += f" ({job.year})"
    return title


def final_directory(job: "Job", completed_dir: Path) -> Path:
    type_dir = convert_job_type(job.video_type)
    title_dir = clean_for_filename(fix_job_title(job)) or "unknown"
    if type_dir:
        return completed_dir / clean_for_filename(type_dir) / title_dir
    return completed_dir / title_dir


class DestinationLock:
    """Inter-process lock keyed on a destination directory."""

    def __init__(self, lock_dir: Path, destination: Path):
        digest = hashlib.sha1(str(destination).encode()).hexdigest()  # noqa: S324
        self.lock_file = lock_dir / f"{digest}.lock"
        self.lock_fd: int | None = None

    def __enter__(self) -> "DestinationLock":
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        self.lock_fd = os.open(str(self.lock_file), os.O_CREAT | os.O_WRONLY)
        fcntl.flock(self.lock_fd, fcntl.LOCK_EX)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.lock_fd is not None:
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
            finally:
                os.close(self.lock_fd)
                self.lock_fd = None


def set_permissions(directory: Path) -> None:
    """Directories 775, files 664, recursively."""
    if not directory.exists():
        return
    try:
        directory.chmod(0o775)
        for root, dirs, files in os.walk(directory):
            for name in dirs:
                (Path(root) / name).chmod(0o775)
            for name in files:
                (Path(root) / name).chmod(0o664)
    except OSError as e:
        logger.warning(f"Failed to set permissions on {directory}: {e}")


def delete_raw_files(directories: list[Path]) -> None:
    for directory in directories:
        if directory.exists():
            shutil.rmtree(directory, ignore_errors=True)
            logger.info(f"Deleted: {directory}")


class LibraryOrganizer:
    """Moves finished files into the library and pokes library servers."""

    def __init__(self, config: "JobConfig", http_client: httpx.AsyncClient | None = None):
        self.config = config
        self.http_client = http_client

    def relocate(
        self,
        job: "Job",
        files: list[Path],
        tracks: list["Track"] | None = None,
        *,
        main_feature: Path | None = None,
    ) -> tuple[Path, list[Path]]:
        """Move ``files`` into ``<completed>/<type>/<title>``.

        A file that cannot be moved raises :class:`RelocationError` internally,
        is logged and skipped. Returns the directory and the moved paths.
        """
        target_dir = final_directory(job, self.config.completed_dir)
        moved: list[Path] = []
        by_filename = {t.filename: t for t in tracks or [] if t.filename}

        with DestinationLock(self.config.lock_dir, target_dir):
            target_dir.mkdir(parents=True, exist_ok=True)
            for source in files:
                if main_feature is not None and source == main_feature:
                    name = clean_for_filename(fix_job_title(job)) + source.suffix
                else:
                    name = source.name
                try:
                    destination = self._move(source, target_dir / name)
                except RelocationError as e:
                    logger.warning(e.message)
                    job.add_error(e.message)
                    continue

                moved.append(destination)
                track = by_filename.get(source.name) or by_filename.get(source.stem + ".mkv")
                if track is not None:
                    track.orig_filename = track.orig_filename or track.filename
                    track.new_filename = destination.name
                    track.ripped = True

        job.path = str(target_dir)
        logger.info(f"Moved {len(moved)} of {len(files)} files to {target_dir}")
        return target_dir, moved

    def _move(self, source: Path, destination: Path) -> Path:
        if not source.exists():
            msg = f"File not found for move: {source}"
            raise RelocationError(msg)

        if destination.exists():
            counter = 1
            stem, suffix = destination.stem, destination.suffix
            while destination.exists():
                destination = destination.with_name(f"{stem} ({counter}){suffix}")
                counter += 1

        try:
            shutil.move(str(source), str(destination))
        except OSError as e:
            msg = f"Failed to move {source} -> {destination}: {e}"
            raise RelocationError(msg, original_error=e) from e
        logger.info(f"Moved: {source} -> {destination}")
        return destination

    def rip_data(self, job: "Job") -> Path:
        """Copy the mounted tree of a data disc under a cleaned title."""
        name = clean_for_filename(job.title or job.label) or "data_disc"
        target = self.config.completed_dir / name
        logger.info(f"Copying data disc {job.mountpoint} -> {target}")
        with DestinationLock(self.config.lock_dir, target):
            shutil.copytree(job.mountpoint, target, dirs_exist_ok=True)
        job.path = str(target)
        return target

    async def scan_emby(self) -> bool:
        config = self.config
        if not (config.emby_refresh and config.emby_server and config.emby_api_key):
            return False
        if self.http_client is None:
            return False

        url = f"http://{config.emby_server}:{config.emby_port}/Library/Refresh"
        try:
            response = await self.http_client.post(url, params={"api_key": config.emby_api_key})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Emby scan failed: {e}")
            return False
        logger.info("Emby library scan triggered")
        return True

    def scan_plex(self) -> bool:
        """Refresh every Plex library section."""
        if not (self.config.plex_url and self.config.plex_token):
            return False
        try:
            server = PlexServer(self.config.plex_url, self.config.plex_token)
            server.library.update()
        except (PlexApiException, OSError) as e:
            logger.warning(f"Failed to trigger Plex library scan: {e}")
            return False
        logger.info(f"Triggered Plex scan on {server.friendlyName}")
        return True
