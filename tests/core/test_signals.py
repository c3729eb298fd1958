"""Tests for the shutdown signal hub."""

import signal
import threading

import pytest

from cask.core.signals import ShutdownSignals

pytestmark = [
    pytest.mark.unit,
    pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="requires SIGUSR1"),
]


@pytest.fixture
def hub():
    return ShutdownSignals()


class TestShutdownSignals:
    def test_first_listener_installs_handler(self, hub):
        previous = signal.getsignal(signal.SIGUSR1)
        handle = hub.add_listener(signal.SIGUSR1, lambda signum: None)
        try:
            assert signal.getsignal(signal.SIGUSR1) == hub._dispatch
        finally:
            handle.remove()
        assert signal.getsignal(signal.SIGUSR1) == previous

    def test_handler_kept_until_last_listener_removed(self, hub):
        first = hub.add_listener(signal.SIGUSR1, lambda signum: None)
        second = hub.add_listener(signal.SIGUSR1, lambda signum: None)
        first.remove()
        assert signal.getsignal(signal.SIGUSR1) == hub._dispatch
        assert len(hub.listeners(signal.SIGUSR1)) == 1
        second.remove()
        assert hub.listeners(signal.SIGUSR1) == []

    def test_remove_is_idempotent(self, hub):
        handle = hub.add_listener(signal.SIGUSR1, lambda signum: None)
        other = hub.add_listener(signal.SIGUSR1, lambda signum: None)
        handle.remove()
        handle.remove()
        assert not handle.active
        assert hub.listeners(signal.SIGUSR1) == [other.callback]
        other.remove()

    def test_dispatch_calls_every_listener(self, hub):
        received = []
        first = hub.add_listener(signal.SIGUSR1, received.append)
        second = hub.add_listener(signal.SIGUSR1, lambda signum: received.append(-signum))
        try:
            hub._dispatch(signal.SIGUSR1, None)
        finally:
            first.remove()
            second.remove()
        assert received == [signal.SIGUSR1, -signal.SIGUSR1]

    def test_failing_listener_does_not_block_others(self, hub):
        received = []

        def failing(signum):
            raise RuntimeError("boom")

        first = hub.add_listener(signal.SIGUSR1, failing)
        second = hub.add_listener(signal.SIGUSR1, received.append)
        try:
            hub._dispatch(signal.SIGUSR1, None)
        finally:
            first.remove()
            second.remove()
        assert received == [signal.SIGUSR1]

    def test_listeners_per_signal(self, hub):
        handle = hub.add_listener(signal.SIGUSR1, lambda signum: None)
        try:
            assert hub.listeners(signal.SIGUSR2) == []
        finally:
            handle.remove()

    def test_main_thread_installs_after_worker_thread_listener(self, hub):
        previous = signal.getsignal(signal.SIGUSR1)
        handles = []

        worker = threading.Thread(
            target=lambda: handles.append(hub.add_listener(signal.SIGUSR1, lambda signum: None))
        )
        worker.start()
        worker.join()
        assert signal.getsignal(signal.SIGUSR1) == previous
        assert len(hub.listeners(signal.SIGUSR1)) == 1

        handles.append(hub.add_listener(signal.SIGUSR1, lambda signum: None))
        try:
            assert signal.getsignal(signal.SIGUSR1) == hub._dispatch
        finally:
            for handle in handles:
                handle.remove()
        assert signal.getsignal(signal.SIGUSR1) == previous
