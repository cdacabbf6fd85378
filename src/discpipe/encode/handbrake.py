"""HandBrakeCLI transcoder."""

from pathlib import Path

from discpipe.encode.base import TranscodeSettings, Transcoder


class HandBrakeTranscoder(Transcoder):
    name = "HandBrakeCLI"
    reads_disc = True

    def build_command(
        self,
        source: Path | str,
        destination: Path,
        settings: TranscodeSettings,
        *,
        title: int | None = None,
        main_feature: bool = False,
    ) -> list[str]:
        cmd = [self.config.handbrake_cli, "-i", str(source), "-o", str(destination)]
        if settings.preset:
            cmd += ["--preset", settings.preset]
        cmd += settings.args
        if title is not None:
            cmd += ["-t", str(title)]
        if main_feature:
            cmd.append("--main-feature")
        return cmd
