# gs_platform/store.py
# persistence collaborator: templates, instances, mappings, backups and history.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
import json
import threading
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from ._logging import log as _root_log
from .config_base import _write_json_atomic
from .errors import NotFoundError

log = _root_log.child("store")

__all__ = ["Store", "JsonStore", "utc_now_iso"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _new_id() -> str:
    return uuid.uuid4().hex


class Store(Protocol):
    def get_template(self, template_id: str) -> dict[str, Any] | None: ...
    def list_templates(self, user_id: str | None = None, *, include_deleted: bool = False) -> list[dict[str, Any]]: ...
    def put_template(self, record: Mapping[str, Any]) -> None: ...
    def update_template(self, template_id: str, changes: Mapping[str, Any]) -> dict[str, Any]: ...
    def list_user_ids(self) -> list[str]: ...

    def get_instance(self, instance_id: str) -> dict[str, Any] | None: ...
    def put_instance(self, record: Mapping[str, Any]) -> None: ...

    def list_mappings(self, template_id: str) -> list[dict[str, Any]]: ...
    def upsert_mapping(self, template_id: str, instance_id: str, fields: Mapping[str, Any]) -> dict[str, Any]: ...
    def delete_mapping(self, template_id: str, instance_id: str) -> bool: ...

    def create_backup_and_history(
        self,
        backup: Mapping[str, Any],
        deployment: Mapping[str, Any],
        sync_history: Mapping[str, Any],
    ) -> tuple[str, str, str]: ...
    def finalize_history(self, deployment_id: str, sync_history_id: str, fields: Mapping[str, Any]) -> None: ...
    def latest_successful_deployment(self, template_id: str, instance_id: str) -> dict[str, Any] | None: ...
    def get_deployment(self, deployment_id: str) -> dict[str, Any] | None: ...
    def get_backup(self, backup_id: str) -> dict[str, Any] | None: ...
    def record_restore(self, backup_id: str, summary: Mapping[str, Any]) -> None: ...

    def list_score_overrides(self, instance_id: str, profile_id: int) -> list[dict[str, Any]]: ...
    def put_score_override(self, instance_id: str, profile_id: int, custom_format_id: int, score: int) -> None: ...


def _empty_doc() -> dict[str, Any]:
    return {
        "templates": {},
        "instances": {},
        "mappings": [],
        "backups": {},
        "deployments": {},
        "sync_history": {},
        "score_overrides": [],
    }


@dataclass
class JsonStore:
    """Single-document JSON store; every mutating call is one atomic file write."""

    path: Path
    _doc: dict[str, Any] = field(init=False, repr=False)
    _lock: threading.RLock = field(init=False, repr=False, default_factory=threading.RLock)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self._doc = self._read()

    def _read(self) -> dict[str, Any]:
        doc = _empty_doc()
        if not self.path.exists():
            return doc
        try:
            data = json.loads(self.path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            log.warn(f"unreadable store {self.path}: {e}; starting empty")
            return doc
        if isinstance(data, dict):
            for k, v in data.items():
                if k in doc and isinstance(v, type(doc[k])):
                    doc[k] = v
        return doc

    def _commit(self) -> None:
        _write_json_atomic(self.path, self._doc)

    # Templates
    def get_template(self, template_id: str) -> dict[str, Any] | None:
        with self._lock:
            rec = self._doc["templates"].get(template_id)
            return copy.deepcopy(rec) if rec else None

    def list_templates(self, user_id: str | None = None, *, include_deleted: bool = False) -> list[dict[str, Any]]:
        with self._lock:
            out = []
            for rec in self._doc["templates"].values():
                if user_id is not None and rec.get("user_id") != user_id:
                    continue
                if rec.get("deleted_at") and not include_deleted:
                    continue
                out.append(copy.deepcopy(rec))
            return out

    def put_template(self, record: Mapping[str, Any]) -> None:
        rec = dict(record)
        if not rec.get("id"):
            rec["id"] = _new_id()
        with self._lock:
            self._doc["templates"][rec["id"]] = rec
            self._commit()

    def update_template(self, template_id: str, changes: Mapping[str, Any]) -> dict[str, Any]:
        with self._lock:
            rec = self._doc["templates"].get(template_id)
            if rec is None:
                raise NotFoundError(f"template {template_id} not found")
            staged = dict(rec)
            staged.update(changes)
            staged["updated_at"] = utc_now_iso()
            self._doc["templates"][template_id] = staged
            try:
                self._commit()
            except OSError:
                self._doc["templates"][template_id] = rec
                raise
            return copy.deepcopy(staged)

    def list_user_ids(self) -> list[str]:
        with self._lock:
            ids = {str(r.get("user_id")) for r in self._doc["templates"].values() if r.get("user_id") and not r.get("deleted_at")}
            return sorted(ids)

    # Instances
    def get_instance(self, instance_id: str) -> dict[str, Any] | None:
        with self._lock:
            rec = self._doc["instances"].get(instance_id)
            return copy.deepcopy(rec) if rec else None

    def put_instance(self, record: Mapping[str, Any]) -> None:
        rec = dict(record)
        if not rec.get("id"):
            rec["id"] = _new_id()
        with self._lock:
            self._doc["instances"][rec["id"]] = rec
            self._commit()

    # Quality-profile mappings
    def list_mappings(self, template_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(m) for m in self._doc["mappings"] if m.get("template_id") == template_id]

    def upsert_mapping(self, template_id: str, instance_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        now = utc_now_iso()
        with self._lock:
            for m in self._doc["mappings"]:
                if m.get("template_id") == template_id and m.get("instance_id") == instance_id:
                    m.update(fields)
                    m["updated_at"] = now
                    self._commit()
                    return copy.deepcopy(m)
            m = {"template_id": template_id, "instance_id": instance_id, "sync_strategy": "notify", "created_at": now}
            m.update(fields)
            m["updated_at"] = now
            self._doc["mappings"].append(m)
            self._commit()
            return copy.deepcopy(m)

    def delete_mapping(self, template_id: str, instance_id: str) -> bool:
        with self._lock:
            before = len(self._doc["mappings"])
            self._doc["mappings"] = [
                m for m in self._doc["mappings"]
                if not (m.get("template_id") == template_id and m.get("instance_id") == instance_id)
            ]
            if len(self._doc["mappings"]) == before:
                return False
            self._commit()
            return True

    # Backups and history
    def create_backup_and_history(
        self,
        backup: Mapping[str, Any],
        deployment: Mapping[str, Any],
        sync_history: Mapping[str, Any],
    ) -> tuple[str, str, str]:
        now = utc_now_iso()
        b = {**dict(backup), "id": _new_id(), "created_at": now}
        d = {**dict(deployment), "id": _new_id(), "backup_id": b["id"], "deployed_at": now, "seq": 0}
        s = {**dict(sync_history), "id": _new_id(), "backup_id": b["id"], "started_at": now}
        with self._lock:
            d["seq"] = len(self._doc["deployments"]) + 1
            self._doc["backups"][b["id"]] = b
            self._doc["deployments"][d["id"]] = d
            self._doc["sync_history"][s["id"]] = s
            try:
                self._commit()
            except OSError:
                self._doc["backups"].pop(b["id"], None)
                self._doc["deployments"].pop(d["id"], None)
                self._doc["sync_history"].pop(s["id"], None)
                raise
        return b["id"], d["id"], s["id"]

    def finalize_history(self, deployment_id: str, sync_history_id: str, fields: Mapping[str, Any]) -> None:
        now = utc_now_iso()
        with self._lock:
            d = self._doc["deployments"].get(deployment_id)
            s = self._doc["sync_history"].get(sync_history_id)
            if d is not None:
                d.update(fields)
                d["completed_at"] = now
            if s is not None:
                s.update({k: v for k, v in fields.items() if k != "template_snapshot"})
                s["completed_at"] = now
            self._commit()

    def latest_successful_deployment(self, template_id: str, instance_id: str) -> dict[str, Any] | None:
        with self._lock:
            hits = [
                d for d in self._doc["deployments"].values()
                if d.get("template_id") == template_id
                and d.get("instance_id") == instance_id
                and d.get("status") == "SUCCESS"
                and d.get("template_snapshot")
            ]
            if not hits:
                return None
            hits.sort(key=lambda d: (str(d.get("deployed_at") or ""), int(d.get("seq") or 0)), reverse=True)
            return copy.deepcopy(hits[0])

    def get_deployment(self, deployment_id: str) -> dict[str, Any] | None:
        with self._lock:
            rec = self._doc["deployments"].get(deployment_id)
            return copy.deepcopy(rec) if rec else None

    def get_backup(self, backup_id: str) -> dict[str, Any] | None:
        with self._lock:
            rec = self._doc["backups"].get(backup_id)
            return copy.deepcopy(rec) if rec else None

    def record_restore(self, backup_id: str, summary: Mapping[str, Any]) -> None:
        now = utc_now_iso()
        with self._lock:
            b = self._doc["backups"].get(backup_id)
            if b is None:
                raise NotFoundError(f"backup {backup_id} not found")
            b.setdefault("restores", []).append({**dict(summary), "restored_at": now})
            for rows in (self._doc["deployments"].values(), self._doc["sync_history"].values()):
                for r in rows:
                    if r.get("backup_id") == backup_id:
                        r["rolled_back_at"] = now
            self._commit()

    def delete_backup(self, backup_id: str) -> None:
        with self._lock:
            if self._doc["backups"].pop(backup_id, None) is None:
                return
            for d in self._doc["deployments"].values():
                if d.get("backup_id") == backup_id:
                    d["backup_id"] = None
            for s in self._doc["sync_history"].values():
                if s.get("backup_id") == backup_id:
                    s["backup_id"] = None
            self._commit()

    def prune_expired_backups(self, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)).isoformat(timespec="seconds")
        with self._lock:
            expired = [b["id"] for b in self._doc["backups"].values() if b.get("expires_at") and b["expires_at"] <= cutoff]
        for bid in expired:
            self.delete_backup(bid)
        if expired:
            log.info(f"pruned {len(expired)} expired backup(s)")
        return len(expired)

    # Instance-level score overrides
    def list_score_overrides(self, instance_id: str, profile_id: int) -> list[dict[str, Any]]:
        with self._lock:
            return [
                dict(o) for o in self._doc["score_overrides"]
                if o.get("instance_id") == instance_id and o.get("profile_id") == profile_id
            ]

    def put_score_override(self, instance_id: str, profile_id: int, custom_format_id: int, score: int) -> None:
        with self._lock:
            for o in self._doc["score_overrides"]:
                if (o.get("instance_id"), o.get("profile_id"), o.get("custom_format_id")) == (instance_id, profile_id, custom_format_id):
                    o["score"] = int(score)
                    break
            else:
                self._doc["score_overrides"].append(
                    {"instance_id": instance_id, "profile_id": profile_id, "custom_format_id": custom_format_id, "score": int(score)}
                )
            self._commit()
