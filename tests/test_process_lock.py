"""Tests for duplicate-run detection."""

import os
import subprocess
from unittest.mock import Mock, patch

from discpipe.process_lock import duplicate_run_check, find_discpipe_processes


def pgrep(stdout, returncode=0):
    return Mock(returncode=returncode, stdout=stdout, stderr="")


class TestFindProcesses:
    def test_other_process_on_same_device(self):
        output = "4242 /usr/bin/python3 /usr/local/bin/discpipe /dev/sr0\n"
        with patch("discpipe.process_lock.subprocess.run", return_value=pgrep(output)):
            assert find_discpipe_processes("/dev/sr0") == [
                (4242, "/usr/bin/python3 /usr/local/bin/discpipe /dev/sr0"),
            ]

    def test_other_device_is_ignored(self):
        output = "4242 discpipe /dev/sr1\n"
        with patch("discpipe.process_lock.subprocess.run", return_value=pgrep(output)):
            assert find_discpipe_processes("/dev/sr0") == []

    def test_device_prefix_is_not_a_match(self):
        output = "4242 discpipe /dev/sr01\n"
        with patch("discpipe.process_lock.subprocess.run", return_value=pgrep(output)):
            assert find_discpipe_processes("/dev/sr0") == []

    def test_own_process_and_shells_are_ignored(self):
        output = (
            f"{os.getpid()} discpipe /dev/sr0\n"
            "5000 sh -c discpipe /dev/sr0\n"
            "garbage line\n"
        )
        with patch("discpipe.process_lock.subprocess.run", return_value=pgrep(output)):
            assert find_discpipe_processes("/dev/sr0") == []

    def test_no_matches(self):
        with patch("discpipe.process_lock.subprocess.run", return_value=pgrep("", returncode=1)):
            assert find_discpipe_processes("/dev/sr0") == []

    def test_pgrep_unavailable(self):
        with patch("discpipe.process_lock.subprocess.run", side_effect=FileNotFoundError("pgrep")):
            assert find_discpipe_processes("/dev/sr0") == []

    def test_pgrep_timeout(self):
        with patch(
            "discpipe.process_lock.subprocess.run",
            side_effect=subprocess.TimeoutExpired("pgrep", 5),
        ):
            assert find_discpipe_processes("/dev/sr0") == []


def test_duplicate_run_check():
    with patch("discpipe.process_lock.find_discpipe_processes", return_value=[(1, "discpipe /dev/sr0")]):
        assert duplicate_run_check("/dev/sr0") is True
    with patch("discpipe.process_lock.find_discpipe_processes", return_value=[]):
        assert duplicate_run_check("/dev/sr0") is False
