# services/scheduling.py
# GuideSync - periodic auto-sync of templates whose mappings opted into automatic updates
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable

from gs_platform._logging import log as _root_log

log = _root_log.child("scheduler")


def _now_ts() -> int:
    return int(time.time())


def _iso(ts: int) -> str:
    if not ts:
        return ""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class AutoSyncScheduler:
    def __init__(
        self,
        engine: Any,
        load_config: Callable[[], dict[str, Any]],
        log_fn: Callable[..., Any] | None = None,
    ) -> None:
        self.engine = engine
        self.load_config_cb = load_config
        self.log_fn = log_fn

        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._poke = threading.Event()
        self._lock = threading.Lock()
        self._busy = False

        self._status: dict[str, Any] = {
            "running": False,
            "last_tick": 0,
            "last_run_ok": None,
            "last_run_at": 0,
            "next_run_at": 0,
            "next_run_iso": "",
            "last_error": "",
            "last_synced": 0,
            "last_failed": 0,
        }

    def _log(self, msg: str, *, level: str = "INFO") -> None:
        if self.log_fn:
            self.log_fn(msg, level=level)
            return
        getattr(log, level.lower(), log.info)(msg)

    def _interval_seconds(self) -> float:
        cfg = self.load_config_cb() or {}
        try:
            minutes = float((cfg.get("updates") or {}).get("interval_minutes") or 60)
        except (TypeError, ValueError):
            minutes = 60.0
        return max(60.0, minutes * 60.0)

    def status(self) -> dict[str, Any]:
        with self._lock:
            st = dict(self._status)
            st["busy"] = self._busy
        st["interval_seconds"] = self._interval_seconds()
        return st

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._poke.clear()
        self._thread = threading.Thread(target=self._loop, name="AutoSyncScheduler", daemon=True)
        self._thread.start()
        self._log("scheduler thread started", level="INFO")

    def stop(self) -> None:
        self._stop.set()
        self._poke.set()
        t = self._thread
        if t and t.is_alive():
            t.join(timeout=3.0)
        self._log("scheduler thread stopped", level="INFO")

    def refresh(self) -> None:
        self._poke.set()
        if not self._thread or not self._thread.is_alive():
            self.start()

    def run_once(self) -> dict[str, Any]:
        """Process auto updates for every known user; one user failing never stops the others."""
        with self._lock:
            if self._busy:
                self._log("auto-sync skipped: previous run still in progress", level="INFO")
                return {"skipped": True, "users": {}}
            self._busy = True

        users: dict[str, Any] = {}
        synced = failed = 0
        errors: list[str] = []
        try:
            for uid in list(self.engine.user_ids()):
                try:
                    summary = self.engine.process_auto_updates(uid)
                except Exception as e:
                    errors.append(f"{uid}: {e}")
                    users[uid] = {"error": str(e)}
                    self._log(f"auto-sync failed for user {uid}: {e}", level="ERROR")
                    continue
                synced += int(summary.get("synced") or 0)
                failed += int(summary.get("failed") or 0)
                users[uid] = {k: v for k, v in summary.items() if k != "results"}

            prune = getattr(self.engine.store, "prune_expired_backups", None)
            if callable(prune):
                prune()
        finally:
            with self._lock:
                self._busy = False
                self._status["last_run_ok"] = not errors and failed == 0
                self._status["last_run_at"] = _now_ts()
                self._status["last_error"] = "; ".join(errors)
                self._status["last_synced"] = synced
                self._status["last_failed"] = failed

        self._log(f"auto-sync run done synced={synced} failed={failed} users={len(users)}", level="INFO")
        return {"skipped": False, "synced": synced, "failed": failed, "users": users}

    def _loop(self) -> None:
        with self._lock:
            self._status["running"] = True
        try:
            while not self._stop.is_set():
                interval = self._interval_seconds()
                nxt = _now_ts() + int(interval)
                with self._lock:
                    self._status["last_tick"] = _now_ts()
                    self._status["next_run_at"] = nxt
                    self._status["next_run_iso"] = _iso(nxt)

                self._sleep_or_poke(interval)
                if self._stop.is_set():
                    break
                if _now_ts() < nxt:
                    # poked; recompute interval from config
                    continue
                try:
                    self.run_once()
                except Exception as e:
                    self._log(f"auto-sync run crashed: {e}", level="ERROR")
                    with self._lock:
                        self._status["last_run_ok"] = False
                        self._status["last_error"] = str(e)
        finally:
            with self._lock:
                self._status["running"] = False

    def _sleep_or_poke(self, seconds: float) -> None:
        if seconds <= 0:
            return
        self._poke.wait(timeout=seconds)
        self._poke.clear()
