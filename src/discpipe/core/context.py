"""Per-run registry of collaborators."""

import logging
from dataclasses import dataclass, field

import httpx

from discpipe import __version__
from discpipe.config import DiscPipeConfig, JobConfig
from discpipe.encode.base import Transcoder, select_transcoder
from discpipe.error_handling import ConfigurationError
from discpipe.identify.ai import AIAgent, AIContextStrategy, AILabelStrategy, require_agent
from discpipe.identify.base import IdentificationStrategy
from discpipe.identify.musicbrainz import MusicBrainzClient
from discpipe.identify.providers import OMDbClient, OMDbStrategy, TMDBClient, TMDBStrategy
from discpipe.identify.resolver import IdentificationResolver
from discpipe.notify.dispatcher import NotificationDispatcher
from discpipe.organize.library import LibraryOrganizer
from discpipe.storage.database import JobDatabase
from discpipe.tools.makemkv import MakeMKV
from discpipe.tools.runner import ToolRunner

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Everything one pipeline run needs, created and closed by the caller."""

    config: JobConfig
    db: JobDatabase
    runner: ToolRunner
    http: httpx.AsyncClient
    agent: AIAgent
    resolver: IdentificationResolver
    makemkv: MakeMKV
    transcoder: Transcoder
    library: LibraryOrganizer
    notifier: NotificationDispatcher
    _closed: bool = field(default=False, repr=False)

    @classmethod
    async def create(cls, config: DiscPipeConfig, db: JobDatabase | None = None) -> "RunContext":
        """Snapshot ``config`` and build the collaborators.

        Raises ConfigurationError when no AI credential is configured.
        """
        snapshot = config.snapshot()
        snapshot.ensure_directories()
        db = db or JobDatabase(snapshot.database_path)
        runner = ToolRunner(snapshot.tool_output_limit, snapshot.tool_timeout)
        http = httpx.AsyncClient(
            timeout=snapshot.metadata_request_timeout,
            headers={"User-Agent": f"discpipe/{__version__}"},
        )
        try:
            agent = require_agent(snapshot, http)
        except ConfigurationError:
            await http.aclose()
            raise

        return cls(
            config=snapshot,
            db=db,
            runner=runner,
            http=http,
            agent=agent,
            resolver=IdentificationResolver(
                build_strategies(snapshot, http, agent),
                musicbrainz=MusicBrainzClient(http),
                db=db,
            ),
            makemkv=MakeMKV(snapshot, runner),
            transcoder=select_transcoder(snapshot, runner),
            library=LibraryOrganizer(snapshot, http),
            notifier=NotificationDispatcher(snapshot, db),
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.notifier.close()
        await self.http.aclose()


def build_strategies(
    config: JobConfig,
    http: httpx.AsyncClient,
    agent: AIAgent | None,
) -> list[IdentificationStrategy]:
    """OMDb, TMDB, AI label parsing, AI context fallback, in that order."""
    strategies: list[IdentificationStrategy] = []
    if config.omdb_api_key:
        strategies.append(OMDbStrategy(OMDbClient(config.omdb_api_key, http)))
    if config.tmdb_api_key:
        strategies.append(
            TMDBStrategy(TMDBClient(config.tmdb_api_key, http, config.tmdb_language), agent),
        )
    if agent is not None:
        strategies.append(AILabelStrategy(agent))
        strategies.append(AIContextStrategy(agent))
    return strategies
