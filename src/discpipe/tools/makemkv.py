"""MakeMKV integration for disc extraction."""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from discpipe.error_handling import ExtractionError, ToolError
from discpipe.tools.runner import ToolRunner

if TYPE_CHECKING:
    from discpipe.config import JobConfig

logger = logging.getLogger(__name__)

BACKUP_METHODS = ("backup", "backup_dvd")

# TINFO attribute ids
ATTR_NAME = 2
ATTR_CHAPTERS = 8
ATTR_DURATION = 9
ATTR_SIZE = 10
ATTR_FILENAME = 27
# SINFO attribute ids
ATTR_RESOLUTION = 19
ATTR_ASPECT = 20
ATTR_FPS = 21


def convert_to_seconds(hms: str | None) -> int:
    """Convert ``H:MM:SS`` or ``M:SS`` to seconds. Anything unusable is 0."""
    if not hms or not isinstance(hms, str):
        return 0
    try:
        parts = [int(part) for part in hms.strip().split(":")]
    except ValueError:
        return 0
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    return parts[0]


def parse_line(line: str) -> tuple[str, str] | None:
    """Split a robot line at its first colon into (prefix, content)."""
    if not line or ":" not in line:
        return None
    prefix, content = line.split(":", 1)
    return prefix, content


def parse_content(content: str) -> list[str]:
    """Split robot content on commas, stripping surrounding quotes."""
    if not content:
        return []
    return [part.strip().removeprefix('"').removesuffix('"') for part in content.split(",")]


@dataclass
class DiscTitle:
    """A title reported by ``makemkvcon info``."""

    index: int
    name: str = ""
    duration: int = 0  # seconds
    chapters: int = 0
    size: int = 0
    filename: str = ""
    aspect_ratio: str = ""
    resolution: str = ""
    fps: float = 0.0
    attributes: dict[int, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"Title {self.index} {self.name or self.filename} ({self.duration}s)"


def parse_info_output(output: str) -> tuple[int, list[DiscTitle]]:
    """Parse robot output into the reported title count and the titles."""
    titles: dict[int, DiscTitle] = {}
    title_count = 0

    for line in output.splitlines():
        parsed = parse_line(line)
        if not parsed:
            continue
        prefix, content = parsed
        parts = parse_content(content)

        if prefix == "TCOUNT" and parts:
            try:
                title_count = int(parts[0])
            except ValueError:
                logger.warning(f"Unexpected TCOUNT line: {line}")
        elif prefix == "TINFO" and len(parts) >= 4:
            # The value is the remainder; names may contain commas
            index, attr = _as_int(parts[0]), _as_int(parts[1])
            value = ",".join(parts[3:])
            title = titles.setdefault(index, DiscTitle(index=index))
            title.attributes[attr] = value
            if attr == ATTR_NAME:
                title.name = value
            elif attr == ATTR_DURATION:
                title.duration = convert_to_seconds(value)
            elif attr == ATTR_CHAPTERS:
                title.chapters = _as_int(value)
            elif attr == ATTR_SIZE:
                title.size = _as_int(value)
            elif attr == ATTR_FILENAME:
                title.filename = value
        elif prefix == "SINFO" and len(parts) >= 5:
            index, attr = _as_int(parts[0]), _as_int(parts[2])
            value = ",".join(parts[4:])
            title = titles.get(index)
            if title is None:
                continue
            if attr == ATTR_RESOLUTION and not title.resolution:
                title.resolution = value
            elif attr == ATTR_ASPECT and not title.aspect_ratio:
                title.aspect_ratio = value
            elif attr == ATTR_FPS and not title.fps:
                title.fps = _parse_fps_label(value)

    ordered = [titles[i] for i in sorted(titles)]
    return title_count or len(ordered), ordered


def select_main_feature(
    titles: list[DiscTitle],
    min_length: int,
    max_length: int,
) -> DiscTitle | None:
    """Pick the longest title whose duration lies within the bounds."""
    candidates = [t for t in titles if min_length <= t.duration <= max_length]
    if not candidates:
        return None
    return max(candidates, key=lambda t: (t.duration, t.size))


def extract_error(output: str) -> str:
    """Pull the first error-looking MSG text out of robot output."""
    for line in output.splitlines():
        parsed = parse_line(line)
        if not parsed or parsed[0] != "MSG":
            continue
        parts = parse_content(parsed[1])
        if len(parts) < 4:
            continue
        text = parts[3]
        lowered = text.lower()
        if any(word in lowered for word in ("too old", "registration key", "failed", "error")):
            return text
    return ""


def _as_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _parse_fps_label(value: str) -> float:
    # MakeMKV reports e.g. "23.976 (24000/1001)"
    try:
        return float(value.split()[0])
    except (IndexError, ValueError):
        return 0.0


class MakeMKV:
    """Interface to ``makemkvcon`` in robot mode."""

    def __init__(self, config: "JobConfig", runner: ToolRunner):
        self.config = config
        self.runner = runner
        self.binary = config.makemkv_con

    def _command(self, *args: str, minlength: int | None = None) -> list[str]:
        cmd = [self.binary, *args]
        if minlength is not None:
            cmd.append(f"--minlength={minlength}")
        return cmd

    def info(self, devpath: str) -> tuple[int, list[DiscTitle]]:
        """Scan the disc and return its titles."""
        cmd = self._command(
            "info",
            f"dev:{devpath}",
            "--robot",
            minlength=self.config.min_length,
        )
        logger.info(f"Scanning disc on {devpath}")
        try:
            output = self.runner.run(
                cmd,
                strict=True,
                timeout=self.config.makemkv_info_timeout,
            )
        except ToolError as e:
            raise self._extraction_error("MakeMKV disc scan failed", e) from e

        title_count, titles = parse_info_output(output or "")
        logger.info(f"MakeMKV reported {title_count} titles")
        return title_count, titles

    def backup(self, devpath: str, out_path: Path) -> str:
        """Decrypted full-disc backup."""
        out_path.mkdir(parents=True, exist_ok=True)
        cmd = self._command(
            "backup",
            "--decrypt",
            f"dev:{devpath}",
            str(out_path),
            "--robot",
        )
        return self._rip(cmd, "backup")

    def mkv(self, devpath: str, out_path: Path, title: int | str = "all") -> str:
        """Extract titles to MKV files. ``title`` is an index or ``all``."""
        out_path.mkdir(parents=True, exist_ok=True)
        cmd = self._command(
            "mkv",
            f"dev:{devpath}",
            str(title),
            str(out_path),
            "--robot",
            minlength=self.config.min_length if title == "all" else None,
        )
        return self._rip(cmd, "mkv")

    def rip(self, devpath: str, out_path: Path) -> str:
        """Rip using the configured method."""
        if self.config.rip_method in BACKUP_METHODS:
            return self.backup(devpath, out_path)
        return self.mkv(devpath, out_path)

    def _rip(self, cmd: list[str], mode: str) -> str:
        logger.info(f"Running MakeMKV {mode}: {shlex.join(cmd)}")
        try:
            output = self.runner.run(cmd, strict=True, timeout=self.config.tool_timeout)
        except ToolError as e:
            raise self._extraction_error(f"MakeMKV {mode} failed", e) from e
        return output or ""

    def _extraction_error(self, message: str, error: ToolError) -> ExtractionError:
        reason = extract_error(error.details or "")
        if reason:
            message = f"{message}: {reason}"
        elif error.exit_code is not None:
            message = f"{message} (exit code {error.exit_code})"
        return ExtractionError(
            "makemkvcon",
            message=message,
            details=error.details,
            original_error=error,
        )
