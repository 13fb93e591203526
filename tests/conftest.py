# Copyright (c) Syntropy Systems
"""Pytest fixtures for promptgrid tests."""

import asyncio
import os
import sqlite3
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from promptgrid.models.result import Completion

# Store original cwd at module load time
_original_cwd = Path.cwd()


class FakeInvoker:
    """Scripted model capability and entitlement checker.

    ``responses`` maps a model id to a Completion or an exception to raise.
    Models not listed echo the user message back.
    """

    def __init__(self, responses=None, allowed=None):
        self.responses = dict(responses or {})
        self.allowed = allowed
        self.calls = []
        self.closed = False

    def has_valid_key_for_model(self, model_id):
        return self.allowed is None or model_id in self.allowed

    async def invoke(self, messages, model_id):
        self.calls.append((list(messages), model_id))
        await asyncio.sleep(0)
        outcome = self.responses.get(model_id)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return Completion(text=f"{model_id}: {messages[-1].content}")
        return outcome

    async def aclose(self):
        self.closed = True


class FakeClock:
    """Millisecond clock that advances by a fixed step on every read."""

    def __init__(self, start=1000.0, step=120.0):
        self.now = start
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def promptgrid_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary promptgrid project directory."""
    from promptgrid.config import PromptGridConfig, save_config
    from promptgrid.db import init_db

    project_dir = temp_dir / ".promptgrid"
    project_dir.mkdir()
    save_config(project_dir, PromptGridConfig())
    init_db(project_dir / "promptgrid.db")

    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def db_connection(promptgrid_project: Path) -> Generator[sqlite3.Connection, None, None]:
    """Get a database connection for the test project."""
    from promptgrid.db import get_connection

    conn = get_connection(promptgrid_project / ".promptgrid" / "promptgrid.db")
    yield conn
    conn.close()


@pytest.fixture
def store():
    """An empty store with the catalog's default models."""
    from promptgrid.store import TestMatrixStore

    return TestMatrixStore()


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
