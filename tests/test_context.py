"""Tests for per-run collaborator wiring."""

from unittest.mock import AsyncMock

import pytest

from discpipe.core.context import RunContext, build_strategies
from discpipe.encode.ffmpeg import FFmpegTranscoder
from discpipe.error_handling import ConfigurationError


class TestBuildStrategies:
    def test_order_with_all_sources(self, config):
        config.omdb_api_key = "o"
        config.tmdb_api_key = "t"
        strategies = build_strategies(config.snapshot(), AsyncMock(), agent=AsyncMock())
        assert [s.name for s in strategies] == ["omdb", "tmdb", "ai_label", "ai_context"]

    def test_ai_only(self, job_config):
        strategies = build_strategies(job_config, AsyncMock(), agent=AsyncMock())
        assert [s.name for s in strategies] == ["ai_label", "ai_context"]

    def test_no_agent(self, job_config):
        assert build_strategies(job_config, AsyncMock(), agent=None) == []


class TestRunContext:
    @pytest.mark.asyncio
    async def test_create_and_close(self, config):
        config.use_ffmpeg = True
        ctx = await RunContext.create(config)
        try:
            assert ctx.config is not config
            assert config.log_dir.is_dir()
            assert ctx.config.database_path.exists()
            assert isinstance(ctx.transcoder, FFmpegTranscoder)
            assert ctx.agent.api_key == "test-key"
        finally:
            await ctx.close()
        assert ctx.http.is_closed
        await ctx.close()

    @pytest.mark.asyncio
    async def test_missing_ai_key(self, config):
        config.ai_api_key = None
        with pytest.raises(ConfigurationError):
            await RunContext.create(config)
