"""Pytest configuration and fixtures."""

import io

import pytest
from rich.console import Console

from qflow.config import EngineConfig
from qflow.constraints import ConstraintValidator
from qflow.events import EventBus
from qflow.orchestrator import Orchestrator
from qflow.protection import ProtectionChain
from qflow.reversibility import ReversibilityCoordinator


@pytest.fixture
def console() -> Console:
    """Console writing to an in-memory buffer, no colour codes."""
    return Console(file=io.StringIO(), width=200, color_system=None)


@pytest.fixture
def events(console: Console) -> EventBus:
    return EventBus(console=console)


@pytest.fixture
def validator(events: EventBus, console: Console) -> ConstraintValidator:
    """Validator with the core rule set and auto-rollback disabled."""
    return ConstraintValidator(config=EngineConfig(auto_rollback=False), events=events, console=console)


@pytest.fixture
def chain(events: EventBus, console: Console) -> ProtectionChain:
    return ProtectionChain(events=events, console=console)


@pytest.fixture
def coordinator(events: EventBus, console: Console) -> ReversibilityCoordinator:
    return ReversibilityCoordinator(events=events, console=console)


@pytest.fixture
def orchestrator(console: Console) -> Orchestrator:
    return Orchestrator(console=console)
