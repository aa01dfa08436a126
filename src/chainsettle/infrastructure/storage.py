"""Storage abstractions and Redis implementation for repositories."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from redis.exceptions import NoScriptError

from .database import DatabaseClient


class KeyValueStore(ABC):
    """Abstract key-value store with the operations repositories need.

    Multi-key invariants are enforced by named server-side scripts, registered
    once at startup and executed atomically with ``run_script``.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        pass

    @abstractmethod
    async def register_script(self, name: str, script: str) -> str:
        """Load a script and return its SHA1."""
        pass

    @abstractmethod
    async def run_script(
        self, name: str, keys: Sequence[str], args: Sequence[str]
    ) -> Any:
        pass


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed implementation of KeyValueStore."""

    def __init__(self, db_client: DatabaseClient):
        self._db_client = db_client
        self._script_shas: dict[str, str] = {}
        self._script_sources: dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        async with self._db_client.get_connection() as conn:
            return await conn.get(key)

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        async with self._db_client.get_connection() as conn:
            return await conn.zrevrange(key, start, end)

    async def register_script(self, name: str, script: str) -> str:
        async with self._db_client.get_connection() as conn:
            sha = await conn.script_load(script)
        self._script_shas[name] = sha
        self._script_sources[name] = script
        return sha

    async def run_script(
        self, name: str, keys: Sequence[str], args: Sequence[str]
    ) -> Any:
        if name not in self._script_shas:
            raise ValueError(f"Script '{name}' not registered")
        async with self._db_client.get_connection() as conn:
            try:
                return await conn.evalsha(
                    self._script_shas[name], len(keys), *keys, *args
                )
            except NoScriptError:
                # Script cache flushed (e.g. Redis restart); reload once
                sha = await conn.script_load(self._script_sources[name])
                self._script_shas[name] = sha
                return await conn.evalsha(sha, len(keys), *keys, *args)
