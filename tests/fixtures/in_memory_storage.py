"""In-memory implementation of KeyValueStore for testing."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional, Sequence

from chainsettle.infrastructure.storage import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """In-memory implementation of KeyValueStore for fast testing.

    Registered ledger scripts are executed by Python equivalents of the Lua
    source; each runs without awaiting, so it is atomic on the event loop just
    as the Lua script is atomic on the Redis server.
    """

    def __init__(self, *, latency: float = 0.0) -> None:
        self._data: dict[str, str] = {}
        self._sorted_sets: dict[str, dict[str, float]] = {}
        self._script_sources: dict[str, str] = {}
        # Artificial delay before each operation, to widen race windows
        self.latency = latency
        self.script_calls: list[str] = []

    async def _tick(self) -> None:
        await asyncio.sleep(self.latency)

    async def get(self, key: str) -> Optional[str]:
        await self._tick()
        return self._data.get(key)

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        await self._tick()
        members = sorted(
            self._sorted_sets.get(key, {}).items(), key=lambda x: x[1], reverse=True
        )
        # Redis ranges are inclusive; -1 means the end of the set
        slice_end = None if end == -1 else end + 1
        return [m for m, _ in members[start:slice_end]]

    async def register_script(self, name: str, script: str) -> str:
        self._script_sources[name] = script
        return f"sha1_{name}"

    async def run_script(
        self, name: str, keys: Sequence[str], args: Sequence[str]
    ) -> Any:
        if name not in self._script_sources:
            raise ValueError(f"Script '{name}' not registered")
        await self._tick()
        self.script_calls.append(name)
        if name == "create_payment":
            return self._execute_create_payment(keys, args)
        if name == "compare_and_set_payment":
            return self._execute_compare_and_set_payment(keys, args)
        raise NotImplementedError(f"Script not implemented: {name}")

    def _execute_create_payment(
        self, keys: Sequence[str], args: Sequence[str]
    ) -> list[Any]:
        payment_key, reference_key, index_key = keys
        payment_json, payment_id, created_ts = args
        if reference_key in self._data or payment_key in self._data:
            return [0, ""]
        self._data[payment_key] = payment_json
        self._data[reference_key] = payment_id
        self._sorted_sets.setdefault(index_key, {})[payment_id] = float(created_ts)
        return [1, payment_json]

    def _execute_compare_and_set_payment(
        self, keys: Sequence[str], args: Sequence[str]
    ) -> list[Any]:
        (payment_key,) = keys
        new_val, expected_status, expected_hash = args
        current_raw = self._data.get(payment_key)
        if current_raw is None:
            return [2, ""]

        current = json.loads(current_raw)
        current_hash = current.get("transaction_hash") or ""
        if current.get("status") != expected_status or current_hash != expected_hash:
            return [0, current_raw]

        current_sweep = current.get("sweep_transaction_hash")
        if current_sweep is not None:
            if json.loads(new_val).get("sweep_transaction_hash") != current_sweep:
                return [0, current_raw]

        self._data[payment_key] = new_val
        return [1, new_val]

    def clear(self) -> None:
        """Clear all data (useful for test teardown)."""
        self._data.clear()
        self._sorted_sets.clear()
        self._script_sources.clear()
        self.script_calls.clear()
