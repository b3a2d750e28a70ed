"""Single-instance run lock.

RunLock guards against two dispatcher processes on the same host. Both would
accept webhooks and both would run deploys against the same containers, so
the second process must refuse to start.

The lock is a file containing the owner's PID. On acquire:
    - no file            → write our PID, acquired
    - file, owner alive  → not acquired; the caller exits
    - file, owner dead   → stale lock from a crash; reclaim it, acquired
    - file, unreadable   → treated as stale

Release removes the file, but only if it still holds our PID. Release runs
on every exit path: the context manager, an atexit hook, and SIGTERM/SIGHUP
handlers that turn the signal into a normal SystemExit.

This is a single-host mechanism. Running dispatchers on several hosts
against one deploy target would need a distributed lock instead.
"""

import atexit
import logging
import os
import pathlib
import signal

from core.errors import LockContention

logger = logging.getLogger(__name__)

_EXIT_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


class RunLock:
    """PID-file lock with stale-owner reclamation.

    Usage:
        lock = RunLock(settings.lock_file)
        if not lock.acquire():
            sys.exit(1)
        try:
            serve()
        finally:
            lock.release()

    or, equivalently, `with lock:` after a successful acquire().

    Attributes:
        path: Location of the lock file.
        pid: PID written into the lock; the current process by default.
    """

    def __init__(self, path: pathlib.Path | str, pid: int | None = None) -> None:
        self.path = pathlib.Path(path)
        self.pid = os.getpid() if pid is None else pid
        self._held = False
        self._hooks_installed = False

    @property
    def held(self) -> bool:
        return self._held

    def owner_pid(self) -> int | None:
        """PID recorded in the lock file, or None if absent or unreadable."""
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (FileNotFoundError, ValueError):
            return None

    def acquire(self, install_hooks: bool = True) -> bool:
        """Try to take the lock.

        Args:
            install_hooks: Register atexit and signal handlers that release
                the lock. Tests pass False to keep global state untouched.

        Returns:
            True if this process now owns the lock, False if a live process
            already does.
        """
        if self._held:
            return True

        # Two attempts: the second only happens after a stale lock was
        # removed and another process won the race to recreate it.
        for _ in range(2):
            if self._try_create():
                self._held = True
                logger.info("Acquired run lock %s (pid %d).", self.path, self.pid)
                if install_hooks:
                    self._install_hooks()
                return True

            owner = self.owner_pid()
            if owner == self.pid:
                self._held = True
                return True
            if owner is not None and pid_alive(owner):
                logger.error(
                    "Run lock %s is held by live process %d — another instance is running.",
                    self.path, owner,
                )
                return False

            logger.warning(
                "Reclaiming stale run lock %s (owner %s is not running).",
                self.path, owner if owner is not None else "unknown",
            )
            self._remove()

        return False

    def release(self) -> None:
        """Remove the lock file if we own it. Idempotent."""
        if not self._held:
            return
        self._held = False
        if self.owner_pid() == self.pid:
            self._remove()
            logger.info("Released run lock %s.", self.path)

    def __enter__(self) -> "RunLock":
        if not self.acquire():
            raise LockContention(self.owner_pid() or -1)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    # ── Private helpers ───────────────────────────────────────────────────────

    def _try_create(self) -> bool:
        """Atomically create the lock file with our PID. False if it exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(f"{self.pid}\n")
        return True

    def _remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def _install_hooks(self) -> None:
        if self._hooks_installed:
            return
        self._hooks_installed = True
        atexit.register(self.release)

        def _on_signal(signum, frame):
            self.release()
            raise SystemExit(128 + signum)

        for sig in _EXIT_SIGNALS:
            try:
                signal.signal(sig, _on_signal)
            except ValueError:
                # Not the main thread; atexit still covers normal exits.
                logger.debug("Cannot install handler for %s outside the main thread.", sig)


def pid_alive(pid: int) -> bool:
    """Check whether a process with this PID exists.

    Signal 0 performs the permission and existence checks without sending
    anything. EPERM means the process exists but belongs to another user.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
