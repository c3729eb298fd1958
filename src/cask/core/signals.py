"""Process-wide shutdown signal listeners.

Python keeps a single handler per signal. ``ShutdownSignals`` multiplexes it:
the OS-level handler is installed by the first ``add_listener`` for a signal
made on the main thread, calls every listener on delivery, and the previous
handler is restored when the last listener is removed.

Each ``add_listener`` call returns a ``SignalListener`` handle; removing the
handle is the only way to unsubscribe, so an owner that keeps its handle can
never subscribe twice by accident.

Example:
    >>> handle = add_listener(signal.SIGTERM, lambda signum: print("bye"))
    >>> len(listeners(signal.SIGTERM))
    1
    >>> handle.remove()
"""

from __future__ import annotations

import signal
import threading
from typing import Any, Callable

from loguru import logger

SignalCallback = Callable[[int], Any]


class SignalListener:
    """Handle for one subscribed callback."""

    def __init__(self, hub: ShutdownSignals, signum: int, callback: SignalCallback):
        self._hub = hub
        self.signum = signum
        self.callback = callback
        self.active = True

    def remove(self) -> None:
        """Unsubscribe. Calling this more than once has no further effect."""
        if self.active:
            self._hub._remove(self)
            self.active = False

    def __repr__(self) -> str:
        return f"SignalListener(signal={signal.Signals(self.signum).name}, active={self.active})"


class ShutdownSignals:
    """Multiplexes OS signal delivery to any number of listeners."""

    def __init__(self):
        self._listeners: dict[int, list[SignalListener]] = {}
        self._previous: dict[int, Any] = {}
        self._lock = threading.RLock()

    def add_listener(self, signum: int, callback: SignalCallback) -> SignalListener:
        listener = SignalListener(self, signum, callback)
        with self._lock:
            # Retried on every add until it succeeds from the main thread
            if signum not in self._previous:
                self._install(signum)
            self._listeners.setdefault(signum, []).append(listener)
        return listener

    def listeners(self, signum: int) -> list[SignalCallback]:
        with self._lock:
            return [listener.callback for listener in self._listeners.get(signum, [])]

    def _remove(self, listener: SignalListener) -> None:
        with self._lock:
            registered = self._listeners.get(listener.signum, [])
            if listener in registered:
                registered.remove(listener)
            if not registered:
                self._listeners.pop(listener.signum, None)
                self._uninstall(listener.signum)

    def _dispatch(self, signum: int, frame: Any) -> None:
        logger.info(f"Received {signal.Signals(signum).name}")
        for listener in list(self._listeners.get(signum, [])):
            try:
                listener.callback(signum)
            except Exception as e:
                logger.error(f"Signal listener {listener.callback!r} failed: {e}")

    def _install(self, signum: int) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.warning(
                f"Cannot install a {signal.Signals(signum).name} handler outside the main thread"
            )
            return
        self._previous[signum] = signal.getsignal(signum)
        signal.signal(signum, self._dispatch)
        logger.debug(f"Installed {signal.Signals(signum).name} handler")

    def _uninstall(self, signum: int) -> None:
        if signum not in self._previous:
            return
        if threading.current_thread() is not threading.main_thread():
            logger.warning(
                f"Cannot restore the {signal.Signals(signum).name} handler outside the main thread"
            )
            return
        previous = self._previous.pop(signum)
        signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        logger.debug(f"Restored previous {signal.Signals(signum).name} handler")


_signals = ShutdownSignals()


def add_listener(signum: int, callback: SignalCallback) -> SignalListener:
    """Subscribe ``callback`` to ``signum`` on the process-wide hub."""
    return _signals.add_listener(signum, callback)


def listeners(signum: int) -> list[SignalCallback]:
    """Return the callbacks currently subscribed to ``signum``."""
    return _signals.listeners(signum)
