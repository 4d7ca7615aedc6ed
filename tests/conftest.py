from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from protopeer.network import LocalTransport, Peer


async def settle(turns: int = 5) -> None:
    """Let scheduled deliveries and handler tasks run."""
    for _ in range(turns):
        await asyncio.sleep(0)


@pytest.fixture
def transports() -> tuple[LocalTransport, LocalTransport]:
    return LocalTransport.pair(("alice", "bob"))


@pytest_asyncio.fixture
async def peers(transports) -> AsyncGenerator[tuple[Peer, Peer], None]:
    """Two peers connected through an in-memory transport pair."""
    left, right = transports
    # Each side's Peer is named after the endpoint it talks to
    alice = Peer("bob", left, request_timeout=1.0)
    bob = Peer("alice", right, request_timeout=1.0)

    yield alice, bob

    alice.close()
    bob.close()
