"""Tests for the server entry point: run lock handling and config errors.

uvicorn.run is replaced with a recorder, so no socket is ever bound.
"""

import logging
import os

import pytest

import main
from core.config import Settings
from core.lock import RunLock


@pytest.fixture
def settings(tmp_path):
    return Settings(
        webhook_secret="s3cr3t",
        deploy_workdir=None,
        log_dir=tmp_path / "logs",
        lock_file=tmp_path / "dispatcher.lock",
    )


@pytest.fixture(autouse=True)
def isolate_process_state(monkeypatch):
    """Keep serve() from touching the root logger and signal handlers for good."""
    monkeypatch.setattr(RunLock, "_install_hooks", lambda self: None)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


@pytest.fixture
def uvicorn_calls(monkeypatch):
    calls = []

    def fake_run(app, **kwargs):
        calls.append((app, kwargs))

    monkeypatch.setattr(main.uvicorn, "run", fake_run)
    return calls


class TestServe:
    def test_live_lock_owner_exits_1(self, settings, uvicorn_calls, live_pid, caplog):
        settings.lock_file.write_text(f"{live_pid}\n")

        assert main.serve(settings) == 1
        assert uvicorn_calls == []
        assert settings.lock_file.read_text().strip() == str(live_pid)
        assert f"Another dispatcher instance is running (pid {live_pid})" in caplog.text

    def test_clean_run_returns_0_and_releases_lock(self, settings, monkeypatch):
        seen_owner = []

        def fake_run(app, **kwargs):
            seen_owner.append(RunLock(settings.lock_file).owner_pid())
            assert kwargs["port"] == settings.port

        monkeypatch.setattr(main.uvicorn, "run", fake_run)

        assert main.serve(settings) == 0
        assert seen_owner == [os.getpid()]
        assert not settings.lock_file.exists()

    def test_stale_lock_reclaimed_on_start(self, settings, uvicorn_calls):
        settings.lock_file.write_text(f"{2**22 + 12345}\n")
        assert main.serve(settings) == 0
        assert len(uvicorn_calls) == 1
        assert not settings.lock_file.exists()

    def test_lock_released_when_server_crashes(self, settings, monkeypatch):
        def fake_run(app, **kwargs):
            raise OSError("address already in use")

        monkeypatch.setattr(main.uvicorn, "run", fake_run)
        with pytest.raises(OSError):
            main.serve(settings)
        assert not settings.lock_file.exists()

    def test_audit_log_written(self, settings, uvicorn_calls):
        main.serve(settings)
        log_files = list(settings.log_dir.glob("webhook-*.log"))
        assert len(log_files) == 1
        assert "Dispatcher starting" in log_files[0].read_text()


class TestMain:
    def test_invalid_config_exits_2(self, monkeypatch, uvicorn_calls, capsys):
        monkeypatch.setenv("DEPLOY_SCRIPT", "   ")
        with pytest.raises(SystemExit) as info:
            main.main()
        assert info.value.code == 2
        assert uvicorn_calls == []
        assert "deploy_command" in capsys.readouterr().err
