"""Fake implementations of core ports and test helpers.

- FakeClock: Settable clock for deterministic SLA and timestamp tests
- FakeNotificationPort: Captured domain events for assertion
- make_submission: Consistent "order submitted" payloads
- build_core: All core services wired over the in-memory store
"""

from .clock import FakeClock
from .core import Core, build_core
from .notification import FakeNotificationPort
from .orders import make_submission

__all__ = [
    "Core",
    "FakeClock",
    "FakeNotificationPort",
    "build_core",
    "make_submission",
]
