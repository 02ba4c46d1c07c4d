"""Shared fixtures for the USV console test suite."""

import asyncio
import os
import sys

import pytest

# Ensure project root is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from store_adapter import InMemoryStore


@pytest.fixture
def store():
    """An in-memory store whose session is already ready."""
    s = InMemoryStore()
    s.mark_ready()
    return s


@pytest.fixture
def notifications():
    """Records (level, message) notifications emitted by the mission manager."""
    return []


@pytest.fixture
def notify(notifications):
    def _notify(level, message):
        notifications.append((level, message))
    return _notify


def take(sub, count):
    """Read `count` already-delivered events from a subscription."""
    async def _take():
        return [await asyncio.wait_for(sub.__anext__(), timeout=1.0) for _ in range(count)]
    return asyncio.run(_take())
