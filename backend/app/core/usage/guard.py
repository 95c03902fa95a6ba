############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# guard.py: Per-identity locks serializing check-and-record
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Per-identity serialization of quota check and quota consumption.

Two requests from the same caller must not both read a pre-increment count
and both be allowed. ``UsageGuard.hold`` takes one ``asyncio.Lock`` per
identity facet the policy counts on (user id for authenticated callers;
session, fingerprint and IP for guests). Keys are acquired in sorted order
so overlapping identities cannot deadlock. Locks exist only while someone
holds or waits on them.

Scope is a single process; multi-worker deployments serialize per worker.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from backend.app.core.identity import UNKNOWN, Identity
from backend.app.logging_config import get_logger

logger = get_logger(__name__)


def guard_keys(identity: Identity) -> List[str]:
    """Lock keys for an identity, sorted."""
    if identity.user_id is not None:
        return [f"user:{identity.user_id}"]

    keys = {f"session:{identity.session_id}"}
    if identity.device_fingerprint:
        keys.add(f"fingerprint:{identity.device_fingerprint}")
    if identity.ip_address and identity.ip_address != UNKNOWN:
        keys.add(f"ip:{identity.ip_address}")
    return sorted(keys)


class UsageGuard:
    """Registry of per-identity locks."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    @property
    def active_keys(self) -> int:
        """Number of keys currently held or awaited."""
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, identity: Identity) -> AsyncIterator[None]:
        """Hold every lock for ``identity`` for the duration of the block."""
        keys = guard_keys(identity)
        for key in keys:
            self._refs[key] = self._refs.get(key, 0) + 1
            self._locks.setdefault(key, asyncio.Lock())

        held: List[asyncio.Lock] = []
        try:
            for key in keys:
                lock = self._locks[key]
                await lock.acquire()
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
            for key in keys:
                self._refs[key] -= 1
                if self._refs[key] == 0:
                    del self._refs[key]
                    del self._locks[key]


# Process-wide guard used by the tool handler and the record endpoint
usage_guard = UsageGuard()
