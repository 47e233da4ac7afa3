"""
Shared pytest fixtures for DCA tests.
"""
import threading
import time

import pytest

from dca.config import DcaConfig


@pytest.fixture
def config():
    """Explicit config so tests never read /etc/dca/dca.env or DCA_* variables."""
    return DcaConfig(extract_cover=False, sink_timeout_ms=1000)


@pytest.fixture(autouse=False)  # Request explicitly in tests that own threads
def thread_leak_guard():
    """
    Detect session threads left running after a test.

    Only DCA-named threads count; pytest and logging may start their own.
    """
    before = set(t.ident for t in threading.enumerate())
    yield
    deadline = time.monotonic() + 2.0
    while True:
        leaked = [
            t for t in threading.enumerate()
            if t.ident not in before and t.name.startswith("Dca") and t.is_alive()
        ]
        if not leaked or time.monotonic() > deadline:
            break
        time.sleep(0.01)
    if leaked:
        thread_info = '\n'.join(f"  - {t.name} (daemon={t.daemon})" for t in leaked)
        assert False, f"Thread leak detected, shutdown incomplete.\nLeaked threads:\n{thread_info}"
