"""Identification results and the strategy interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from discpipe.jobs.models import Job

CONFIDENCE_THRESHOLD = 0.5


def normalize_video_type(value: str | None) -> str:
    value = (value or "").strip().lower()
    if value in ("series", "tv", "tv show", "tv series"):
        return "series"
    if value == "movie":
        return "movie"
    return ""


@dataclass
class Identification:
    """A candidate identity for a disc."""

    title: str
    source: str
    year: str = ""
    video_type: str = ""
    imdb_id: str = ""
    poster_url: str = ""
    confidence: float = 1.0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_confident(self) -> bool:
        return bool(self.title) and self.confidence >= CONFIDENCE_THRESHOLD

    def identity_fields(self) -> dict[str, str]:
        return {
            "title": self.title,
            "year": self.year,
            "video_type": self.video_type,
            "imdb_id": self.imdb_id,
            "poster_url": self.poster_url,
        }

    def __str__(self) -> str:
        year = f" ({self.year})" if self.year else ""
        return f"{self.title}{year} via {self.source} [{self.confidence:.2f}]"


class IdentificationStrategy(ABC):
    """One step of the identification cascade."""

    name = "strategy"

    def applies_to(self, job: "Job") -> bool:
        return True

    @abstractmethod
    async def resolve(self, job: "Job") -> Identification | None:
        """Return a candidate, or None.

        Lookup failures raise IdentificationError, which the resolver recovers from.
        """
