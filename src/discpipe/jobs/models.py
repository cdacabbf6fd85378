"""Job, track and notification records."""

import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from discpipe.jobs.state import JobStatus, transition

if TYPE_CHECKING:
    from discpipe.config import JobConfig

logger = logging.getLogger(__name__)

DISC_TYPES = ("dvd", "bluray", "music", "data", "unknown")
VIDEO_DISC_TYPES = ("dvd", "bluray")

# Title fields that come in _auto/_manual pairs
IDENTITY_FIELDS = ("title", "year", "video_type", "imdb_id", "poster_url")

# Columns of the job table, in order
JOB_FIELDS = (
    "job_id",
    "crc_id",
    "logfile",
    "start_time",
    "stop_time",
    "job_length",
    "status",
    "stage",
    "title",
    "title_auto",
    "title_manual",
    "year",
    "year_auto",
    "year_manual",
    "video_type",
    "video_type_auto",
    "video_type_manual",
    "imdb_id",
    "imdb_id_auto",
    "imdb_id_manual",
    "poster_url",
    "poster_url_auto",
    "poster_url_manual",
    "devpath",
    "mountpoint",
    "label",
    "disctype",
    "hasnicetitle",
    "no_of_titles",
    "path",
    "config_id",
    "errors",
    "pid",
)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class AdvisoryNotes:
    """Best-effort annotations attached to a job while it runs.

    Nothing here is persisted with the job record and nothing here changes
    the outcome of the pipeline.
    """

    transcode_recommendation: dict[str, Any] | None = None
    error_diagnosis: dict[str, Any] | None = None
    duplicate_job_id: int | None = None
    artist: str | None = None


class Job:
    """One attempt at ripping one disc."""

    def __init__(
        self,
        devpath: str = "",
        *,
        job_id: int | None = None,
        status: JobStatus | str = JobStatus.ACTIVE,
        disctype: str = "unknown",
        hasnicetitle: bool = False,
        start_time: datetime | None = None,
        config: "JobConfig | None" = None,
        **values: Any,
    ):
        unknown = set(values) - set(JOB_FIELDS)
        if unknown:
            msg = f"Unknown job fields: {', '.join(sorted(unknown))}"
            raise TypeError(msg)

        self.job_id = job_id
        self.devpath = devpath
        self.disctype = disctype
        self._status = JobStatus(status)
        self._hasnicetitle = bool(hasnicetitle)
        self.start_time = start_time or utcnow()
        self.stop_time: datetime | None = values.get("stop_time")
        self.config = config
        self.advisory = AdvisoryNotes()

        for name in JOB_FIELDS:
            if name in (
                "job_id",
                "devpath",
                "disctype",
                "status",
                "hasnicetitle",
                "start_time",
                "stop_time",
            ):
                continue
            default: Any = None if name in ("no_of_titles", "config_id", "pid") else ""
            value = values.get(name)
            setattr(self, name, default if value is None else value)

    # -- status --------------------------------------------------------

    @property
    def status(self) -> JobStatus:
        return self._status

    def transition_to(self, target: JobStatus | str) -> JobStatus:
        """Move to ``target``, rejecting anything the transition table forbids."""
        new_status = transition(self._status, target)
        if new_status != self._status:
            logger.debug(
                "Job %s: %s -> %s",
                self.job_id,
                self._status.value,
                new_status.value,
            )
        self._status = new_status
        if new_status.is_finished and self.stop_time is None:
            self.stop_time = utcnow()
            self.job_length = format_duration(
                (self.stop_time - self.start_time).total_seconds(),
            )
        return new_status

    @property
    def is_finished(self) -> bool:
        return self._status.is_finished

    @property
    def is_active(self) -> bool:
        return self._status.is_active

    @property
    def is_ripping(self) -> bool:
        return self._status.is_ripping

    @property
    def is_transcoding(self) -> bool:
        return self._status.is_transcoding

    # -- identification ------------------------------------------------

    @property
    def hasnicetitle(self) -> bool:
        return self._hasnicetitle

    @hasnicetitle.setter
    def hasnicetitle(self, value: bool) -> None:
        if self._hasnicetitle and not value:
            msg = "hasnicetitle cannot be cleared once set"
            raise ValueError(msg)
        self._hasnicetitle = bool(value)

    @property
    def is_video(self) -> bool:
        return self.disctype in VIDEO_DISC_TYPES

    def apply_auto_identity(self, **identity: Any) -> None:
        """Record machine-derived identity and refresh the resolved fields."""
        for name, value in identity.items():
            if name not in IDENTITY_FIELDS:
                msg = f"Not an identity field: {name}"
                raise TypeError(msg)
            if value not in (None, ""):
                setattr(self, f"{name}_auto", str(value))
        self.resolve_identity()

    def apply_manual_identity(self, **identity: Any) -> None:
        """Operator override of the title fields."""
        for name, value in identity.items():
            if name not in IDENTITY_FIELDS:
                msg = f"Not an identity field: {name}"
                raise TypeError(msg)
            setattr(self, f"{name}_manual", "" if value is None else str(value))
        self.resolve_identity()

    def resolve_identity(self) -> None:
        """Resolved field = manual value, else auto value, else current value."""
        for name in IDENTITY_FIELDS:
            manual = getattr(self, f"{name}_manual")
            auto = getattr(self, f"{name}_auto")
            setattr(self, name, manual or auto or getattr(self, name))

    # -- errors --------------------------------------------------------

    def add_error(self, message: str) -> None:
        message = message.strip()
        if not message:
            return
        self.errors = f"{self.errors}\n{message}" if self.errors else message

    # -- persistence ---------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for name in JOB_FIELDS:
            if name == "status":
                record[name] = self._status.value
            elif name == "hasnicetitle":
                record[name] = self._hasnicetitle
            elif name in ("start_time", "stop_time"):
                value = getattr(self, name)
                record[name] = value.isoformat() if value else None
            else:
                record[name] = getattr(self, name)
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Job":
        data = dict(record)
        for name in ("start_time", "stop_time"):
            if data.get(name):
                data[name] = datetime.fromisoformat(data[name])
        data["hasnicetitle"] = bool(data.get("hasnicetitle"))
        return cls(**{k: v for k, v in data.items() if k in JOB_FIELDS})

    def __str__(self) -> str:
        name = self.title or self.label or self.devpath
        return f"Job {self.job_id} {name} ({self._status.value})"


@dataclass
class Track:
    """One title or stream extracted from a disc."""

    job_id: int | None
    track_number: int
    length: int = 0  # seconds
    aspect_ratio: str = ""
    fps: float = 0.0
    main_feature: bool = False
    basename: str = ""
    filename: str = ""
    new_filename: str = ""
    orig_filename: str = ""
    ripped: bool = False
    process: bool = True
    source: str = ""
    track_id: int | None = None

    def to_record(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Track":
        names = {f.name for f in fields(cls)}
        data = {k: v for k, v in dict(record).items() if k in names}
        for flag in ("main_feature", "ripped", "process"):
            if flag in data:
                data[flag] = bool(data[flag])
        return cls(**data)


@dataclass
class Notification:
    """A persisted event shown on the dashboard."""

    title: str
    message: str
    seen: bool = False
    cleared: bool = False
    trigger_time: datetime = field(default_factory=utcnow)
    dismiss_time: datetime | None = None
    id: int | None = None


def format_duration(seconds: float) -> str:
    seconds = max(int(seconds), 0)
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}"
