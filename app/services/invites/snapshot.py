"""
Invite snapshots and the snapshot differ.

A snapshot maps invite code -> use count for one group. The join that just
happened is attributed to the one code whose count went up between the
previous snapshot and a fresh one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

Snapshot = Mapping[str, int]


@dataclass(frozen=True)
class SnapshotDiff:
    """
    Result of comparing two snapshots.

    code is None when no attribution is possible (no baseline, or no code
    increased). ambiguous is set when more than one code increased; code then
    holds the deterministic pick.
    """
    code: Optional[str] = None
    delta: int = 0
    candidates: Tuple[str, ...] = ()
    has_baseline: bool = True

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1


def diff_snapshots(old: Optional[Snapshot], new: Snapshot) -> SnapshotDiff:
    """
    Find the invite code whose use count increased from `old` to `new`.

    Only codes present in both snapshots are compared: a code missing from
    `new` was deleted, a code missing from `old` was just created.
    When several codes increased, the largest delta wins and ties go to the
    lexicographically smallest code.
    """
    if old is None:
        return SnapshotDiff(has_baseline=False)

    increased: Dict[str, int] = {}
    for code, uses in new.items():
        if code not in old:
            continue
        delta = int(uses) - int(old[code])
        if delta > 0:
            increased[code] = delta

    if not increased:
        return SnapshotDiff()

    ordered = sorted(increased.items(), key=lambda item: (-item[1], item[0]))
    code, delta = ordered[0]
    return SnapshotDiff(
        code=code,
        delta=delta,
        candidates=tuple(c for c, _ in ordered),
    )


SnapshotFetcher = Callable[[str], Awaitable[Snapshot]]


@dataclass
class InviteSnapshotStore:
    """
    In-memory current snapshot per group.

    refresh_and_diff() is serialized per group so two concurrent joins cannot
    both diff against the same baseline.
    """
    _snapshots: Dict[str, Dict[str, int]] = field(default_factory=dict)
    _locks: Dict[str, asyncio.Lock] = field(default_factory=dict)

    def _lock(self, group_id: str) -> asyncio.Lock:
        lock = self._locks.get(group_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[group_id] = lock
        return lock

    def get(self, group_id: str) -> Optional[Dict[str, int]]:
        snapshot = self._snapshots.get(group_id)
        return dict(snapshot) if snapshot is not None else None

    def replace(self, group_id: str, snapshot: Snapshot) -> None:
        self._snapshots[group_id] = {code: int(uses) for code, uses in snapshot.items()}

    def discard(self, group_id: str) -> None:
        self._snapshots.pop(group_id, None)

    async def seed(self, group_id: str, fetch: SnapshotFetcher) -> Dict[str, int]:
        """
        Fetch a fresh snapshot and merge it into the baseline.

        Codes missing from the baseline are added with their fresh counts;
        codes already in the baseline keep their stored counts, so an increase
        not yet diffed by a join is not absorbed. Without a baseline the fresh
        snapshot becomes the baseline. Fetch errors propagate.
        """
        async with self._lock(group_id):
            fresh = await fetch(group_id)
            current = self._snapshots.get(group_id)
            if current is None:
                self.replace(group_id, fresh)
            else:
                for code, uses in fresh.items():
                    current.setdefault(code, int(uses))
            return dict(self._snapshots[group_id])

    async def refresh_and_diff(self, group_id: str, fetch: SnapshotFetcher) -> SnapshotDiff:
        """
        Fetch a fresh snapshot, diff it against the stored one and store it.

        The fresh snapshot becomes the baseline whatever the diff result.
        If the fetch fails the stored baseline is kept and the error propagates.
        """
        async with self._lock(group_id):
            previous = self._snapshots.get(group_id)
            fresh = await fetch(group_id)
            self.replace(group_id, fresh)
            return diff_snapshots(previous, fresh)
