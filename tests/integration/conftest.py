"""Integration test fixtures: real client and workers on the in-memory engine."""

from __future__ import annotations

from typing import AsyncGenerator

import pytest_asyncio

from flovyn.testing import TestEnvironment


@pytest_asyncio.fixture
async def env() -> AsyncGenerator[TestEnvironment, None]:
    """TestEnvironment that is stopped after the test."""
    async with TestEnvironment() as environment:
        yield environment
