"""Single-slot refresh-token session stores."""

from __future__ import annotations

import hmac
from collections import defaultdict
from threading import Lock
from typing import DefaultDict, Final, Protocol

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError, TimeoutError as RedisTimeoutError, WatchError

from ..domain.errors import StorageUnavailable


class SessionStore(Protocol):
    """Holds at most one live refresh token per account.

    Every operation is linearizable per account: a slot is only ever read,
    compared and written as one atomic step.
    """

    def set(self, account_id: str, refresh_token: str) -> None: ...

    def get(self, account_id: str) -> str | None: ...

    def clear(self, account_id: str) -> None: ...

    def is_current(self, account_id: str, presented: str) -> bool: ...

    def rotate(self, account_id: str, presented: str, replacement: str) -> bool: ...


def tokens_match(stored: str | None, presented: str) -> bool:
    """Constant-time comparison that treats an empty slot as a mismatch."""
    if stored is None:
        return False
    return hmac.compare_digest(stored.encode("utf-8"), presented.encode("utf-8"))


class InMemorySessionStore:
    """Thread-safe session slots guarded by one lock per account."""

    def __init__(self) -> None:
        self._slots: dict[str, str] = {}
        self._locks: DefaultDict[str, Lock] = defaultdict(Lock)
        self._locks_guard = Lock()

    def _lock_for(self, account_id: str) -> Lock:
        with self._locks_guard:
            return self._locks[account_id]

    def set(self, account_id: str, refresh_token: str) -> None:
        """Overwrite the slot; the previous session, if any, is revoked."""
        with self._lock_for(account_id):
            self._slots[account_id] = refresh_token

    def get(self, account_id: str) -> str | None:
        with self._lock_for(account_id):
            return self._slots.get(account_id)

    def clear(self, account_id: str) -> None:
        with self._lock_for(account_id):
            self._slots.pop(account_id, None)

    def is_current(self, account_id: str, presented: str) -> bool:
        with self._lock_for(account_id):
            return tokens_match(self._slots.get(account_id), presented)

    def rotate(self, account_id: str, presented: str, replacement: str) -> bool:
        """Swap in ``replacement`` only if the slot still holds ``presented``."""
        with self._lock_for(account_id):
            if not tokens_match(self._slots.get(account_id), presented):
                return False
            self._slots[account_id] = replacement
            return True


class RedisSessionStore:
    """Distributed session slots stored as one Redis key per account."""

    _ROTATE_SCRIPT: Final[str] = """
    local current = redis.call('GET', KEYS[1])
    if current ~= ARGV[1] then
        return 0
    end
    redis.call('SET', KEYS[1], ARGV[2], 'EX', tonumber(ARGV[3]))
    return 1
    """

    def __init__(
        self,
        client: Redis,
        *,
        ttl_seconds: int,
        key_prefix: str = "session"
    ) -> None:
        """Keep the Redis client, slot expiry and the cached rotation script."""
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix
        self._rotate_script = client.register_script(self._ROTATE_SCRIPT)

    def _key(self, account_id: str) -> str:
        return f"{self._key_prefix}:{account_id}"

    def set(self, account_id: str, refresh_token: str) -> None:
        try:
            self._client.set(self._key(account_id), refresh_token, ex=self._ttl_seconds)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StorageUnavailable() from exc

    def get(self, account_id: str) -> str | None:
        try:
            value = self._client.get(self._key(account_id))
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StorageUnavailable() from exc
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    def clear(self, account_id: str) -> None:
        try:
            self._client.delete(self._key(account_id))
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StorageUnavailable() from exc

    def is_current(self, account_id: str, presented: str) -> bool:
        return tokens_match(self.get(account_id), presented)

    def rotate(self, account_id: str, presented: str, replacement: str) -> bool:
        """Atomically replace the slot when it still holds ``presented``."""
        key = self._key(account_id)
        try:
            try:
                result = self._rotate_script(
                    keys=[key], args=[presented, replacement, self._ttl_seconds]
                )
            except ResponseError as exc:
                message = str(exc).lower()
                if "unknown command `evalsha`" in message or "unknown command `eval`" in message:
                    return self._rotate_fallback(key, presented, replacement)
                raise
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise StorageUnavailable() from exc
        return int(result) == 1

    def _rotate_fallback(self, key: str, presented: str, replacement: str) -> bool:
        """Optimistic WATCH/MULTI rotation used when Lua is unavailable."""
        with self._client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    current = pipe.get(key)
                    if isinstance(current, bytes):
                        current = current.decode("utf-8")
                    if not tokens_match(current, presented):
                        pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(key, replacement, ex=self._ttl_seconds)
                    pipe.execute()
                    return True
                except WatchError:
                    continue
