from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 5_000


class SessionBusy(RuntimeError):
    pass


def lock_key(session_id: str) -> str:
    return f"lock:session:{session_id}"


@contextmanager
def session_lock(*, r: redis.Redis, session_id: str, ttl_ms: int = DEFAULT_TTL_MS) -> Iterator[str]:
    """Hold the per-session lock for one action; yields the holder's token.

    A second request for the same session gets SessionBusy instead of waiting.
    On exit the key is deleted only if it still carries this holder's token: if
    the TTL ran out and another request took over, its lock is left alone.
    """

    key = lock_key(session_id)
    token = uuid4().hex
    if not r.set(key, token, nx=True, px=ttl_ms):
        raise SessionBusy(f"Session {session_id} is busy")
    try:
        yield token
    finally:
        if not release(r=r, key=key, token=token):
            logger.warning("Lock on session %s expired before the action finished", session_id)


def release(*, r: redis.Redis, key: str, token: str) -> bool:
    """Delete `key` if it still holds `token`. Returns False when the hold was lost."""

    with r.pipeline() as pipe:
        try:
            pipe.watch(key)
            current = pipe.get(key)
            if isinstance(current, bytes):
                current = current.decode()
            if current != token:
                pipe.unwatch()
                return False
            pipe.multi()
            pipe.delete(key)
            pipe.execute()
        except redis.WatchError:
            # Someone wrote the key between the read and the delete.
            return False
    return True
