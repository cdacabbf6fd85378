"""Shared transcoder interface and helpers."""

import logging
import math
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from discpipe.error_handling import ToolError, TranscodeError
from discpipe.tools.runner import ToolRunner

if TYPE_CHECKING:
    from discpipe.config import JobConfig

logger = logging.getLogger(__name__)


def compute_aspect(width: int | None, height: int | None) -> str:
    """Reduce a frame size to its aspect ratio, e.g. 1920x1080 -> ``16:9``."""
    if not width or not height:
        return ""
    divisor = math.gcd(int(width), int(height))
    return f"{int(width) // divisor}:{int(height) // divisor}"


def parse_fps(raw: str | float | None) -> float:
    """Parse ``24000/1001``, ``25`` or a number into frames per second."""
    if not raw:
        return 0.0
    if isinstance(raw, int | float):
        return float(raw)
    text = str(raw).strip()
    try:
        if "/" in text:
            num, den = text.split("/", 1)
            return float(num) / float(den) if float(den) else 0.0
        return float(text)
    except ValueError:
        return 0.0


@dataclass(frozen=True)
class TranscodeSettings:
    """Argument set for one disc type."""

    preset: str
    pre_args: list[str]
    args: list[str]
    ext: str


@dataclass
class EncodeResult:
    """Result of one transcode."""

    source: Path | str
    output_file: Path

    def __str__(self) -> str:
        return f"Transcoded {self.source} -> {self.output_file.name}"


class Transcoder(ABC):
    """Common interface for the transcoders."""

    name = "transcoder"
    # Whether the transcoder can read a disc device directly
    reads_disc = False

    def __init__(self, config: "JobConfig", runner: ToolRunner):
        self.config = config
        self.runner = runner

    def settings_for(self, disctype: str) -> TranscodeSettings:
        """Pick the DVD or Blu-ray argument set."""
        bluray = disctype == "bluray"
        config = self.config
        if config.use_ffmpeg:
            return TranscodeSettings(
                preset="",
                pre_args=shlex.split(
                    config.ffmpeg_pre_args_bd if bluray else config.ffmpeg_pre_args_dvd,
                ),
                args=shlex.split(
                    config.ffmpeg_args_bd if bluray else config.ffmpeg_args_dvd,
                ),
                ext=config.dest_ext,
            )
        return TranscodeSettings(
            preset=config.hb_preset_bd if bluray else config.hb_preset_dvd,
            pre_args=[],
            args=shlex.split(config.hb_args_bd if bluray else config.hb_args_dvd),
            ext=config.dest_ext,
        )

    @abstractmethod
    def build_command(
        self,
        source: Path | str,
        destination: Path,
        settings: TranscodeSettings,
        *,
        title: int | None = None,
        main_feature: bool = False,
    ) -> list[str]:
        """Build the argv for one transcode."""

    def transcode(
        self,
        source: Path | str,
        destination: Path,
        disctype: str,
        *,
        title: int | None = None,
        main_feature: bool = False,
    ) -> EncodeResult:
        """Transcode ``source`` into ``destination``. Raises TranscodeError."""
        settings = self.settings_for(disctype)
        destination.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(
            source,
            destination,
            settings,
            title=title,
            main_feature=main_feature,
        )
        logger.info(f"Starting {self.name} transcode of {source}")
        try:
            self.runner.run(cmd, strict=True, timeout=self.config.tool_timeout)
        except ToolError as e:
            raise TranscodeError(
                self.name,
                message=f"{self.name} could not transcode {Path(source).name}",
                details=e.details,
                original_error=e,
            ) from e
        logger.info(f"Finished transcode: {destination.name}")
        return EncodeResult(source=source, output_file=destination)

    def output_path(self, source: Path, out_dir: Path, disctype: str) -> Path:
        ext = self.settings_for(disctype).ext.lstrip(".")
        return out_dir / f"{source.stem}.{ext}"


def select_transcoder(config: "JobConfig", runner: ToolRunner) -> Transcoder:
    """Return the configured transcoder for a job."""
    if config.use_ffmpeg:
        from discpipe.encode.ffmpeg import FFmpegTranscoder

        return FFmpegTranscoder(config, runner)

    from discpipe.encode.handbrake import HandBrakeTranscoder

    return HandBrakeTranscoder(config, runner)
