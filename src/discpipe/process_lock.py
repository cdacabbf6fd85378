"""Duplicate-run detection through the process table."""

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def find_discpipe_processes(devpath: str) -> list[tuple[int, str]]:
    """Other discpipe processes whose command line names ``devpath``."""
    try:
        result = subprocess.run(
            ["pgrep", "-af", "discpipe"],
            check=False,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.SubprocessError, FileNotFoundError) as e:
        logger.warning(f"Could not inspect process table: {e}")
        return []

    if result.returncode != 0 or not result.stdout.strip():
        return []

    own = {os.getpid(), os.getppid()}
    matches = []
    for line in result.stdout.strip().splitlines():
        parts = line.split(maxsplit=1)
        if len(parts) < 2:
            continue
        try:
            pid = int(parts[0])
        except ValueError:
            continue
        cmdline = parts[1]
        if pid in own:
            continue
        # Skip shells wrapping the command
        if cmdline.startswith(("sh -c", "bash -c", "/bin/sh", "/bin/bash", "zsh -c")):
            continue
        if devpath in cmdline.split():
            matches.append((pid, cmdline))
    return matches


def duplicate_run_check(devpath: str) -> bool:
    """True when another discpipe process is already handling ``devpath``."""
    others = find_discpipe_processes(devpath)
    for pid, cmdline in others:
        logger.warning(f"discpipe already running for {devpath}: pid {pid} ({cmdline})")
    return bool(others)
