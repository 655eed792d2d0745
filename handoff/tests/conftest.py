"""Shared fixtures for core and adapter tests."""

import pytest

from handoff.core.policy import Actor, StaffRole
from handoff.tests.fakes import Core, build_core


@pytest.fixture
def core() -> Core:
    """A wired core with room for 20 queued orders."""
    return build_core()


@pytest.fixture
def manager() -> Actor:
    return Actor(id="u-1", name="Dana", role=StaffRole.MANAGER)


@pytest.fixture
def kitchen() -> Actor:
    return Actor(id="u-2", name="Kai", role=StaffRole.KITCHEN)


@pytest.fixture
def runner() -> Actor:
    return Actor(id="r-1", name="Rami", role=StaffRole.RUNNER)


@pytest.fixture
def ops() -> Actor:
    return Actor(id="o-1", name="Noor", role=StaffRole.OPS)
