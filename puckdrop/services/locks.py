"""In-process locks for bracket mutations.

Generation and clearing hold a tournament's bracket lock exclusively. Score
entries hold it shared, plus the match's own lock, so results on different
matches of one tournament never wait on each other but none of them can
interleave with a generate or clear. Row locks (SELECT ... FOR UPDATE) are
taken on top of these where the database supports them.
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable


class BracketLock:
    """Reader/writer lock: many score entries or one generate/clear."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


_bracket_locks: defaultdict[int, BracketLock] = defaultdict(BracketLock)
_match_locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)


@asynccontextmanager
async def bracket_write_lock(tournament_id: int) -> AsyncIterator[None]:
    """Exclusive lock on a tournament's whole match set."""
    async with _bracket_locks[tournament_id].exclusive():
        yield


@asynccontextmanager
async def match_lock(tournament_id: int, match_id: int) -> AsyncIterator[None]:
    """Lock one match for a result submission."""
    async with _bracket_locks[tournament_id].shared():
        async with _match_locks[match_id]:
            yield


def drop_match_locks(match_ids: Iterable[int]) -> None:
    """Forget the locks of deleted matches. Call with the bracket lock held exclusively."""
    for match_id in match_ids:
        _match_locks.pop(match_id, None)


def reset_locks() -> None:
    """Drop all lock objects. Only safe when nothing holds a lock (tests, shutdown)."""
    _bracket_locks.clear()
    _match_locks.clear()
