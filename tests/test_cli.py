"""Essential CLI interface tests."""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from discpipe.cli import attach_job_log, cli
from discpipe.error_handling import MountError
from discpipe.jobs.models import Job
from discpipe.jobs.state import JobStatus


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        f'raw_dir = "{tmp_path / "raw"}"\n'
        f'transcode_dir = "{tmp_path / "transcode"}"\n'
        f'completed_dir = "{tmp_path / "completed"}"\n'
        f'log_dir = "{tmp_path / "logs"}"\n'
        'ai_api_key = "test-key"\n',
    )
    return path


@pytest.fixture(autouse=True)
def no_host_checks():
    """Keep the process table and installed tools out of CLI tests."""
    with (
        patch("discpipe.cli.duplicate_run_check", return_value=False),
        patch("discpipe.cli.check_dependencies", return_value=[]),
    ):
        yield


def finished_job(status):
    return Job("/dev/sr0", job_id=1, status=status, title="Heat")


class TestRun:
    def test_successful_run(self, cli_runner, config_file):
        with patch(
            "discpipe.cli.run_pipeline",
            new=AsyncMock(return_value=finished_job(JobStatus.SUCCESS)),
        ) as run_pipeline:
            result = cli_runner.invoke(cli, ["/dev/sr0", "--config", str(config_file)])

        assert result.exit_code == 0
        config, devpath = run_pipeline.call_args.args
        assert devpath == "/dev/sr0"
        assert config.ai_api_key == "test-key"

    def test_failed_job_exits_nonzero(self, cli_runner, config_file):
        with patch(
            "discpipe.cli.run_pipeline",
            new=AsyncMock(return_value=finished_job(JobStatus.FAIL)),
        ):
            result = cli_runner.invoke(cli, ["/dev/sr0", "-c", str(config_file)])
        assert result.exit_code == 1

    def test_pipeline_error_exits_nonzero(self, cli_runner, config_file):
        with patch("discpipe.cli.run_pipeline", new=AsyncMock(side_effect=MountError("no disc"))):
            result = cli_runner.invoke(cli, ["/dev/sr0", "-c", str(config_file)])
        assert result.exit_code == 1

    def test_missing_ai_key(self, cli_runner, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(f'log_dir = "{tmp_path / "logs"}"\n')
        with patch("discpipe.cli.run_pipeline", new=AsyncMock()) as run_pipeline:
            result = cli_runner.invoke(cli, ["/dev/sr0", "-c", str(path)])
        assert result.exit_code == 1
        run_pipeline.assert_not_called()

    def test_ai_key_from_environment(self, cli_runner, tmp_path, monkeypatch):
        monkeypatch.setenv("DISCPIPE_AI_API_KEY", "env-key")
        path = tmp_path / "config.toml"
        path.write_text(f'log_dir = "{tmp_path / "logs"}"\n')
        with patch(
            "discpipe.cli.run_pipeline",
            new=AsyncMock(return_value=finished_job(JobStatus.SUCCESS)),
        ) as run_pipeline:
            result = cli_runner.invoke(cli, ["/dev/sr0", "-c", str(path)])
        assert result.exit_code == 0
        assert run_pipeline.call_args.args[0].ai_api_key == "env-key"

    def test_invalid_config(self, cli_runner, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('rip_method = "dd"\n')
        result = cli_runner.invoke(cli, ["/dev/sr0", "-c", str(path)])
        assert result.exit_code == 1

    def test_duplicate_run(self, cli_runner, config_file):
        with (
            patch("discpipe.cli.duplicate_run_check", return_value=True),
            patch("discpipe.cli.run_pipeline", new=AsyncMock()) as run_pipeline,
        ):
            result = cli_runner.invoke(cli, ["/dev/sr0", "-c", str(config_file)])
        assert result.exit_code == 1
        run_pipeline.assert_not_called()

    def test_devpath_required(self, cli_runner, config_file):
        result = cli_runner.invoke(cli, ["-c", str(config_file)])
        assert result.exit_code == 2


class TestInitConfig:
    def test_writes_sample(self, cli_runner, tmp_path):
        path = tmp_path / "config.toml"
        result = cli_runner.invoke(cli, ["--init-config", str(path)])
        assert result.exit_code == 0
        assert "ai_api_key" in path.read_text()

    def test_refuses_to_overwrite(self, cli_runner, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("keep me")
        result = cli_runner.invoke(cli, ["--init-config", str(path)])
        assert result.exit_code == 1
        assert path.read_text() == "keep me"


def test_attach_job_log(tmp_path):
    job = Job("/dev/sr0", job_id=12)
    log_file = attach_job_log(job, tmp_path / "logs")
    assert log_file.parent == tmp_path / "logs"
    assert log_file.name.startswith("job_12_")
    assert job.logfile == log_file.name
