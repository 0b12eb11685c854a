"""
Keep-alive — a time-boxed privilege grant renewed in the background.

``sudo`` credentials expire after a few minutes, and a provisioning pass
can take much longer. ``SudoKeepAlive`` asks for the password once, then
a daemon thread renews the grant with ``sudo -n true`` until released.

It is a scoped resource: the executor acquires it before the first step
and releases it in a ``finally``, so release happens exactly once on
normal completion, on abort, and on SystemExit from a signal handler.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

from provisioner.core.engine.errors import ApplyError

if TYPE_CHECKING:
    from provisioner.adapters.base import Host

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL_S = 60


class KeepAlive(Protocol):
    """Anything the executor can acquire before a run and release after."""

    def acquire(self) -> None: ...

    def release(self) -> None: ...


class NullKeepAlive:
    """Keep-alive that holds nothing. Used in mock mode."""

    def __init__(self) -> None:
        self.acquired = False
        self.release_count = 0

    def acquire(self) -> None:
        self.acquired = True

    def release(self) -> None:
        if self.acquired:
            self.acquired = False
            self.release_count += 1

    def __enter__(self) -> NullKeepAlive:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


class SudoKeepAlive:
    """Hold a sudo grant for the lifetime of a run.

    Args:
        host: Host to run ``sudo`` on.
        interval: Seconds between renewals.
    """

    def __init__(self, host: Host, interval: float = DEFAULT_REFRESH_INTERVAL_S):
        self._host = host
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.refresh_count = 0
        self.release_count = 0

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def acquire(self) -> None:
        """Prompt for the password and start the renewal thread.

        Raises:
            ApplyError: The grant could not be obtained.
        """
        if self._thread is not None:
            return

        result = self._host.run("sudo -v", interactive=True)
        if not result.ok:
            raise ApplyError(
                result.stderr.strip() or "Could not obtain sudo privileges",
                command="sudo -v",
                exit_code=result.exit_code,
            )

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._refresh_loop,
            daemon=True,
            name="sudo-keepalive",
        )
        self._thread.start()
        logger.info("Sudo keep-alive started (renew every %.0fs)", self._interval)

    def release(self) -> None:
        """Stop renewing. Safe to call more than once; only the first counts."""
        with self._lock:
            if self._thread is None:
                return
            thread, self._thread = self._thread, None
            self._stop.set()

        thread.join(timeout=max(self._interval, 1.0) + 5.0)
        self.release_count += 1
        logger.info("Sudo keep-alive released after %d renewals", self.refresh_count)

    def _refresh_loop(self) -> None:
        while not self._stop.wait(self._interval):
            result = self._host.run("sudo -n true")
            if result.ok:
                self.refresh_count += 1
            else:
                logger.warning("Sudo keep-alive renewal failed: %s", result.diagnostic)

    def __enter__(self) -> SudoKeepAlive:
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
