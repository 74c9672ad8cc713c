"""Broker configuration for the reconciliation actors.

The broker is configured lazily, at the start of each actor invocation,
rather than at import time.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

_BROKER_LOCK = threading.Lock()
_broker_configured = False
_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _is_running_tests() -> bool:
    """Return True when the process runs under pytest."""
    return "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ


def _should_use_stub_broker() -> bool:
    """Return True when ``STEWARD_ALLOW_STUB_BROKER`` is truthy or under tests."""
    allow_stub = os.environ.get("STEWARD_ALLOW_STUB_BROKER", "").strip().lower()
    return allow_stub in _TRUTHY or _is_running_tests()


def ensure_broker_configured() -> None:
    """Ensure a Dramatiq broker exists before an actor body runs.

    Idempotent and thread-safe; Dramatiq workers call actors from several
    threads.

    Raises
    ------
    RuntimeError
        If no broker is configured and a stub broker is not allowed.

    """
    global _broker_configured  # noqa: PLW0603

    if _broker_configured:
        return

    with _BROKER_LOCK:
        if _broker_configured:
            return

        try:
            current_broker = dramatiq.get_broker()
        except (ImportError, LookupError):
            # No broker set and the default broker's dependencies are missing.
            current_broker = None

        if current_broker is None:
            if not _should_use_stub_broker():
                msg = (
                    "No Dramatiq broker configured. Set STEWARD_ALLOW_STUB_BROKER=1 "
                    "for local runs or configure a real broker."
                )
                raise RuntimeError(msg)
            dramatiq.set_broker(StubBroker())

        _broker_configured = True
