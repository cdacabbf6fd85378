"""Locate or create a mount for the disc device."""

import logging
import re
import subprocess
from pathlib import Path

from discpipe.error_handling import MountError

logger = logging.getLogger(__name__)

_MOUNT_TARGET = re.compile(r"on\s+(\S+)\s+type")


def find_mount(devpath: str, mount_output: str | None = None) -> str | None:
    """Return the existing mountpoint of ``devpath`` from ``mount`` output."""
    if mount_output is None:
        try:
            result = subprocess.run(
                ["mount"],
                check=False,
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (subprocess.SubprocessError, FileNotFoundError) as e:
            logger.warning(f"Could not list mounts: {e}")
            return None
        mount_output = result.stdout

    for line in mount_output.splitlines():
        fields = line.split()
        if not fields or fields[0] != devpath:
            continue
        match = _MOUNT_TARGET.search(line)
        if match:
            return match.group(1)
    return None


def check_mount(devpath: str, mount_root: Path = Path("/mnt")) -> str:
    """Reuse an existing mount or mount at ``/mnt<devpath>``.

    Raises :class:`MountError` when neither works.
    """
    mountpoint = find_mount(devpath)
    if mountpoint:
        logger.debug(f"{devpath} already mounted at {mountpoint}")
        return mountpoint

    mount_dir = mount_root / devpath.lstrip("/")
    try:
        mount_dir.mkdir(parents=True, exist_ok=True)
        result = subprocess.run(
            ["mount", devpath, str(mount_dir)],
            check=False,
            capture_output=True,
            text=True,
            timeout=60,
        )
    except (OSError, subprocess.SubprocessError) as e:
        msg = f"Failed to mount {devpath}"
        raise MountError(msg, details=str(e), original_error=e) from e

    if result.returncode != 0:
        msg = f"Failed to mount {devpath} at {mount_dir}"
        raise MountError(msg, details=(result.stderr or result.stdout).strip())

    logger.info(f"Mounted {devpath} at {mount_dir}")
    return str(mount_dir)
