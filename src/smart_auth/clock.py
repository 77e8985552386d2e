"""Clock abstraction for testable time handling.

Token expiry and refresh decisions MUST depend on an injected ``Clock``
instead of calling ``time.time()`` directly, so tests can freeze or advance
time deterministically.

Example
-------
>>> from smart_auth.clock import default_clock
>>> isinstance(default_clock(), float)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``."""
    return time.time()
