# gs_platform/engine/_metrics.py
# in-memory counters for sync and deployment operations.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class _OpStats:
    total: int = 0
    failures: int = 0
    total_ms: float = 0.0
    last_error: str | None = None
    last_at: float | None = None


@dataclass
class SyncMetrics:
    _ops: dict[str, _OpStats] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def start(self) -> float:
        return time.monotonic()

    def record(self, op: str, started: float, *, ok: bool, error: str | None = None) -> None:
        ms = (time.monotonic() - started) * 1000.0
        with self._lock:
            st = self._ops.setdefault(op, _OpStats())
            st.total += 1
            st.total_ms += ms
            st.last_at = time.time()
            if not ok:
                st.failures += 1
                st.last_error = error

    def overview(self) -> dict[str, Any]:
        with self._lock:
            return {
                op: {
                    "total": st.total,
                    "failures": st.failures,
                    "success_rate": round((st.total - st.failures) / st.total, 4) if st.total else None,
                    "avg_ms": round(st.total_ms / st.total, 1) if st.total else None,
                    "last_error": st.last_error,
                    "last_at": st.last_at,
                }
                for op, st in self._ops.items()
            }
