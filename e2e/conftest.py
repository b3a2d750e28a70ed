"""Fixtures shared across the e2e suites."""

import subprocess

import pytest


@pytest.fixture
def live_pid():
    """PID of a real process owned by someone other than this test."""
    proc = subprocess.Popen(["sleep", "60"])
    yield proc.pid
    proc.kill()
    proc.wait()
