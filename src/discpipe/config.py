"""Configuration management for discpipe."""

import os
from pathlib import Path

import tomli
from pydantic import BaseModel, ConfigDict, Field, field_validator

RIP_METHODS = ("mkv", "backup", "backup_dvd")


class DiscPipeConfig(BaseModel):
    """Main configuration for discpipe."""

    # Paths - Generic defaults, MUST be configured in config.toml for your setup
    raw_dir: Path = Field(default=Path("~/.local/share/discpipe/raw"), validate_default=True)
    transcode_dir: Path = Field(default=Path("~/.local/share/discpipe/transcode"), validate_default=True)
    completed_dir: Path = Field(default=Path("~/media/completed"), validate_default=True)
    log_dir: Path = Field(default=Path("~/.local/share/discpipe/logs"), validate_default=True)

    # Ripping
    rip_method: str = Field(default="mkv")
    main_feature: bool = Field(default=False)
    min_length: int = Field(default=600)  # seconds
    max_length: int = Field(default=99999)  # seconds
    auto_eject: bool = Field(default=False)

    # Transcoding
    skip_transcode: bool = Field(default=False)
    use_ffmpeg: bool = Field(default=False)
    dest_ext: str = Field(default="mkv")
    hb_preset_dvd: str = Field(default="HQ 720p30 Surround")
    hb_preset_bd: str = Field(default="HQ 1080p30 Surround")
    hb_args_dvd: str = Field(default="")
    hb_args_bd: str = Field(default="")
    ffmpeg_pre_args_dvd: str = Field(default="")
    ffmpeg_pre_args_bd: str = Field(default="")
    ffmpeg_args_dvd: str = Field(default="-c:v libx264 -crf 20 -c:a copy")
    ffmpeg_args_bd: str = Field(default="-c:v libx265 -crf 22 -c:a copy")
    max_concurrent_transcodes: int = Field(default=1, ge=1)

    # Metadata providers
    omdb_api_key: str | None = Field(default=None, validate_default=True)
    tmdb_api_key: str | None = Field(default=None, validate_default=True)
    tmdb_language: str = Field(default="en-US")

    # AI agent (OpenAI-compatible chat completions)
    ai_api_key: str | None = Field(default=None, validate_default=True)
    ai_api_url: str = Field(default="https://api.openai.com/v1/chat/completions")
    ai_model: str = Field(default="gpt-4o-mini")
    ai_transcode_advice: bool = Field(default=True)
    ai_error_diagnosis: bool = Field(default=True)

    # Library servers
    emby_refresh: bool = Field(default=False)
    emby_server: str | None = None
    emby_port: int = Field(default=8096)
    emby_api_key: str | None = None
    plex_url: str | None = None
    plex_token: str | None = None

    # Notifications
    notify_title_prefix: str = Field(default="discpipe")
    ntfy_topic: str | None = None
    pb_key: str | None = None
    ifttt_key: str | None = None
    ifttt_event: str | None = None
    po_user_key: str | None = None
    po_app_key: str | None = None
    json_url: str | None = None

    # Timeout Settings (seconds)
    ai_request_timeout: int = Field(default=30)
    metadata_request_timeout: int = Field(default=30)
    notify_request_timeout: int = Field(default=10)
    makemkv_info_timeout: int = Field(default=600)
    tool_timeout: int | None = None  # rips and transcodes run unbounded by default
    eject_timeout: int = Field(default=30)

    # External tools
    tool_output_limit: int = Field(default=50 * 1024 * 1024)  # bytes
    makemkv_con: str = Field(default="makemkvcon")
    handbrake_cli: str = Field(default="HandBrakeCLI")
    ffmpeg_binary: str = Field(default="ffmpeg")
    abcde_binary: str = Field(default="abcde")

    @field_validator(
        "raw_dir",
        "transcode_dir",
        "completed_dir",
        "log_dir",
        mode="before",
    )
    @classmethod
    def expand_paths(cls, v: Path | str) -> Path:
        """Expand user home directory in paths."""
        if isinstance(v, str):
            v = Path(v)
        return v.expanduser().resolve()

    @field_validator("rip_method")
    @classmethod
    def known_rip_method(cls, v: str) -> str:
        v = v.lower()
        if v not in RIP_METHODS:
            msg = f"rip_method must be one of {', '.join(RIP_METHODS)}"
            raise ValueError(msg)
        return v

    @field_validator("ai_api_key", mode="after")
    @classmethod
    def ai_key_from_env(cls, v: str | None) -> str | None:
        return v or os.getenv("DISCPIPE_AI_API_KEY") or None

    @field_validator("omdb_api_key", mode="after")
    @classmethod
    def omdb_key_from_env(cls, v: str | None) -> str | None:
        return v or os.getenv("OMDB_API_KEY") or None

    @field_validator("tmdb_api_key", mode="after")
    @classmethod
    def tmdb_key_from_env(cls, v: str | None) -> str | None:
        return v or os.getenv("TMDB_API_KEY") or None

    @property
    def database_path(self) -> Path:
        return self.log_dir / "discpipe.db"

    @property
    def lock_dir(self) -> Path:
        return self.log_dir / "locks"

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [
            self.raw_dir,
            self.transcode_dir,
            self.completed_dir,
            self.log_dir,
        ]:
            dir_path.mkdir(parents=True, exist_ok=True)

    def snapshot(self) -> "JobConfig":
        """Freeze the current settings for a single job."""
        return JobConfig.model_validate(self.model_dump())


class JobConfig(DiscPipeConfig):
    """Immutable per-job copy of the operator configuration."""

    model_config = ConfigDict(frozen=True)


def load_config(config_path: Path | None = None) -> DiscPipeConfig:
    """Load configuration from file or defaults."""
    if config_path is None:
        possible_paths = [
            Path.home() / ".config" / "discpipe" / "config.toml",  # User config
            Path.cwd() / "discpipe.toml",  # Current directory
        ]

        for path in possible_paths:
            if path.exists():
                config_path = path
                break

    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            config_data = tomli.load(f)
        return DiscPipeConfig(**config_data)
    return DiscPipeConfig()


def create_sample_config(path: Path) -> None:
    """Create a sample configuration file."""
    sample_config = """# discpipe Configuration
# =======================

# ============================================================================
# REQUIRED SETTINGS
# ============================================================================

# AI agent (required - used for disc label parsing and fallback identification)
ai_api_key = "your_api_key_here"                  # Or set DISCPIPE_AI_API_KEY
# ai_api_url = "https://api.openai.com/v1/chat/completions"
# ai_model = "gpt-4o-mini"

# Directory paths
raw_dir = "~/.local/share/discpipe/raw"           # MakeMKV output
transcode_dir = "~/.local/share/discpipe/transcode"
completed_dir = "~/media/completed"               # Final library root
log_dir = "~/.local/share/discpipe/logs"          # Logs, job database, locks

# ============================================================================
# RIPPING
# ============================================================================

rip_method = "mkv"                                # "mkv", "backup" or "backup_dvd"
main_feature = false                              # Only rip the longest title
min_length = 600                                  # Ignore titles shorter than this (seconds)
max_length = 99999                                # Ignore titles longer than this (seconds)

# ============================================================================
# TRANSCODING
# ============================================================================

skip_transcode = false
use_ffmpeg = false                                # false = HandBrakeCLI, true = ffmpeg
max_concurrent_transcodes = 1
dest_ext = "mkv"
hb_preset_dvd = "HQ 720p30 Surround"
hb_preset_bd = "HQ 1080p30 Surround"
hb_args_dvd = ""
hb_args_bd = ""
ffmpeg_pre_args_dvd = ""
ffmpeg_pre_args_bd = ""
ffmpeg_args_dvd = "-c:v libx264 -crf 20 -c:a copy"
ffmpeg_args_bd = "-c:v libx265 -crf 22 -c:a copy"

# ============================================================================
# METADATA PROVIDERS (optional)
# ============================================================================

# omdb_api_key = ""
# tmdb_api_key = ""

# ============================================================================
# LIBRARY SERVERS (optional)
# ============================================================================

# emby_refresh = true
# emby_server = "localhost"
# emby_port = 8096
# emby_api_key = ""
# plex_url = "http://localhost:32400"
# plex_token = ""

# ============================================================================
# NOTIFICATIONS (optional)
# ============================================================================

# ntfy_topic = "https://ntfy.sh/your_topic"
# pb_key = ""                                     # Pushbullet access token
# ifttt_key = ""
# ifttt_event = ""
# po_user_key = ""                                # Pushover
# po_app_key = ""
# json_url = ""                                   # Generic JSON webhook
"""

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        f.write(sample_config)
