"""Tests for MakeMKV robot parsing and command construction."""

from unittest.mock import Mock

import pytest

from discpipe.error_handling import ExtractionError, ToolError
from discpipe.tools.makemkv import (
    DiscTitle,
    MakeMKV,
    convert_to_seconds,
    extract_error,
    parse_content,
    parse_info_output,
    parse_line,
    select_main_feature,
)

SAMPLE_INFO = """MSG:1005,0,1,"MakeMKV v1.17.5 linux(x64-release) started","%1 started","MakeMKV v1.17.5"
TCOUNT:3
TINFO:0,2,0,"Heat"
TINFO:0,8,0,"28"
TINFO:0,9,0,"2:50:12"
TINFO:0,10,0,"9876543210"
TINFO:0,27,0,"Heat_t00.mkv"
SINFO:0,0,19,0,"1920x1080"
SINFO:0,0,20,0,"16:9"
SINFO:0,0,21,0,"23.976 (24000/1001)"
TINFO:1,9,0,"0:12:30"
TINFO:1,27,0,"Heat_t01.mkv"
TINFO:2,9,0,"0:01:10"
TINFO:2,27,0,"Heat_t02.mkv"
"""


class TestParsing:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [("1:30:00", 5400), ("5:30", 330), ("42", 42), ("", 0), (None, 0), ("a:b", 0)],
    )
    def test_convert_to_seconds(self, value, expected):
        assert convert_to_seconds(value) == expected

    def test_parse_line_splits_at_first_colon(self):
        assert parse_line('TINFO:0,9,0,"1:39:03"') == ("TINFO", '0,9,0,"1:39:03"')
        assert parse_line("no colon here") is None
        assert parse_line("") is None

    def test_parse_content_strips_quotes(self):
        assert parse_content('0,9,0,"1:39:03"') == ["0", "9", "0", "1:39:03"]
        assert parse_content("") == []

    def test_parse_info_output(self):
        count, titles = parse_info_output(SAMPLE_INFO)
        assert count == 3
        assert [t.index for t in titles] == [0, 1, 2]

        main = titles[0]
        assert main.name == "Heat"
        assert main.duration == 10212
        assert main.chapters == 28
        assert main.filename == "Heat_t00.mkv"
        assert main.resolution == "1920x1080"
        assert main.aspect_ratio == "16:9"
        assert main.fps == pytest.approx(23.976)

    def test_extract_error(self):
        output = 'MSG:5021,260,1,"This application version is too old.","x"\n'
        assert extract_error(output) == "This application version is too old."
        assert extract_error(SAMPLE_INFO) == ""


class TestMainFeature:
    def test_longest_title_within_bounds(self):
        titles = [
            DiscTitle(index=0, duration=7200),
            DiscTitle(index=1, duration=200000),
            DiscTitle(index=2, duration=300),
        ]
        assert select_main_feature(titles, 600, 99999).index == 0

    def test_nothing_in_bounds(self):
        assert select_main_feature([DiscTitle(index=0, duration=100)], 600, 99999) is None


class TestMakeMKV:
    @pytest.fixture
    def runner(self):
        runner = Mock()
        runner.run.return_value = SAMPLE_INFO
        return runner

    def test_info(self, job_config, runner):
        count, titles = MakeMKV(job_config, runner).info("/dev/sr0")
        assert count == 3
        cmd = runner.run.call_args.args[0]
        assert cmd == ["makemkvcon", "info", "dev:/dev/sr0", "--robot", "--minlength=600"]
        assert runner.run.call_args.kwargs["strict"] is True

    def test_mkv_all(self, job_config, runner, tmp_path):
        MakeMKV(job_config, runner).rip("/dev/sr0", tmp_path / "out")
        cmd = runner.run.call_args.args[0]
        assert cmd[:4] == ["makemkvcon", "mkv", "dev:/dev/sr0", "all"]
        assert cmd[-1] == "--minlength=600"
        assert (tmp_path / "out").is_dir()

    def test_single_title(self, job_config, runner, tmp_path):
        MakeMKV(job_config, runner).mkv("/dev/sr0", tmp_path, 3)
        cmd = runner.run.call_args.args[0]
        assert cmd == ["makemkvcon", "mkv", "dev:/dev/sr0", "3", str(tmp_path), "--robot"]

    def test_backup(self, config, runner, tmp_path):
        config.rip_method = "backup"
        MakeMKV(config.snapshot(), runner).rip("/dev/sr0", tmp_path)
        cmd = runner.run.call_args.args[0]
        assert cmd == ["makemkvcon", "backup", "--decrypt", "dev:/dev/sr0", str(tmp_path), "--robot"]

    def test_failure_becomes_extraction_error(self, job_config, runner, tmp_path):
        runner.run.side_effect = ToolError(
            "makemkvcon",
            2,
            'MSG:5010,0,0,"Failed to open disc","x"',
        )
        with pytest.raises(ExtractionError, match="Failed to open disc"):
            MakeMKV(job_config, runner).rip("/dev/sr0", tmp_path)
