"""Response cache shared by the synchronizer, the bid dialogs and the views.

Entries are keyed by tuples such as ``("lot", 7)`` and only ever replaced
wholesale from a server response. Invalidation marks entries stale (the
last good value stays readable) and tells subscribers so they can refetch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Hashable, Iterable, Optional

log = logging.getLogger("pujar.cache")

Key = tuple[Hashable, ...]
Listener = Callable[[str, Key], None]

UPDATED = "updated"
INVALIDATED = "invalidated"


def lot_key(lot_id: int) -> Key:
    return ("lot", lot_id)


def project_lots_key(project_id: int) -> Key:
    return ("project-lots", project_id)


def my_bids_key() -> Key:
    return ("my-bids",)


def active_bids_key() -> Key:
    return ("active-bids",)


def favorites_key() -> Key:
    return ("favorites",)


def subscription_key(project_id: int, viewer_id: Optional[int]) -> Key:
    return ("subscription", project_id, viewer_id)


@dataclass
class _Entry:
    value: Any
    fetched_at: float = field(default_factory=time.monotonic)
    stale: bool = False


def _covers(prefix: Key, key: Key) -> bool:
    return key[: len(prefix)] == prefix


class QueryCache:
    def __init__(self):
        self._entries: dict[Key, _Entry] = {}
        self._inflight: dict[Key, asyncio.Future] = {}
        self._listeners: dict[Key, list[Listener]] = {}
        self.invalidations: Counter[Key] = Counter()

    # ---- reads -------------------------------------------------------
    def get(self, key: Key, default: Any = None) -> Any:
        entry = self._entries.get(key)
        return entry.value if entry else default

    def has(self, key: Key) -> bool:
        return key in self._entries

    def is_stale(self, key: Key, max_age: Optional[float] = None) -> bool:
        entry = self._entries.get(key)
        if entry is None or entry.stale:
            return True
        return max_age is not None and time.monotonic() - entry.fetched_at > max_age

    # ---- writes ------------------------------------------------------
    def set_from_response(self, key: Key, value: Any) -> None:
        """Replace the entry with a value the server returned."""
        self._entries[key] = _Entry(value)
        self._notify(UPDATED, key, exact=True)

    def invalidate(self, *keys: Key) -> list[Key]:
        """Mark every entry under each key prefix stale and notify subscribers.

        A key passed twice in one call counts once.
        """
        done: list[Key] = []
        for prefix in dict.fromkeys(keys):
            for key, entry in self._entries.items():
                if _covers(prefix, key):
                    entry.stale = True
            # a fetch started before the invalidation must not be reused
            for key in [k for k in self._inflight if _covers(prefix, k)]:
                self._inflight.pop(key)
            self.invalidations[prefix] += 1
            log.debug("invalidated %s", prefix)
            self._notify(INVALIDATED, prefix, exact=False)
            done.append(prefix)
        return done

    async def fetch(self, key: Key, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Load ``key`` through ``loader``, sharing one request per key.

        The response that resolves last overwrites the entry, whatever
        order the requests were issued in.
        """
        fut = self._inflight.get(key)
        if fut is None:
            fut = asyncio.ensure_future(self._load(key, loader))
            self._inflight[key] = fut
        return await asyncio.shield(fut)

    async def _load(self, key: Key, loader: Callable[[], Awaitable[Any]]) -> Any:
        me = asyncio.current_task()
        try:
            value = await loader()
        finally:
            if self._inflight.get(key) is me:
                del self._inflight[key]
        self.set_from_response(key, value)
        return value

    # ---- subscriptions -----------------------------------------------
    def subscribe(self, key: Key, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(key, None)

        return unsubscribe

    def _notify(self, event: str, key: Key, exact: bool) -> None:
        targets: Iterable[tuple[Key, list[Listener]]]
        if exact:
            targets = [(key, self._listeners.get(key, []))]
        else:
            targets = [
                (k, ls) for k, ls in self._listeners.items() if _covers(key, k)
            ]
        for k, listeners in list(targets):
            for listener in list(listeners):
                try:
                    listener(event, k)
                except Exception:
                    log.exception("cache listener failed for %s", k)
