"""ffmpeg transcoder."""

from pathlib import Path

from discpipe.encode.base import TranscodeSettings, Transcoder
from discpipe.error_handling import TranscodeError


class FFmpegTranscoder(Transcoder):
    name = "ffmpeg"

    def build_command(
        self,
        source: Path | str,
        destination: Path,
        settings: TranscodeSettings,
        *,
        title: int | None = None,
        main_feature: bool = False,
    ) -> list[str]:
        if title is not None or main_feature:
            # Title selection only makes sense against a disc
            raise TranscodeError(
                self.name,
                message="ffmpeg cannot select disc titles",
                solution="Rip with MakeMKV first or use HandBrakeCLI",
                recoverable=False,
            )
        return [
            self.config.ffmpeg_binary,
            "-i",
            str(source),
            *settings.pre_args,
            *settings.args,
            str(destination),
        ]
