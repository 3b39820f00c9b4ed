# gs_platform/engine/_updates.py
# per-user scan for templates behind the latest catalog version.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .._logging import log as _root_log
from ..errors import GuideSyncError
from ..models import (
    CHANGE_AUTO_SYNC,
    STRATEGY_AUTO,
    CatalogSnapshot,
    Template,
    TemplateUpdateInfo,
    UpdateCheckResult,
    group_members,
)
from ..store import Store
from ._types import CatalogOps

log = _root_log.child("updates")

__all__ = ["UpdateDetector", "pending_group_additions"]


def pending_group_additions(template: Template, snapshot: CatalogSnapshot) -> list[str]:
    """Catalog members of enabled template groups that the template does not carry yet."""
    have = template.config.rule_ids()
    latest = snapshot.group_map()
    out: list[str] = []
    for g in template.config.custom_format_groups:
        if not g.enabled or g.deprecated:
            continue
        cat = latest.get(g.trash_id)
        if cat is None:
            continue
        for tid in group_members(cat):
            if tid not in have and tid not in out:
                out.append(tid)
    return out


def _parse_ts(s: str | None) -> datetime | None:
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(str(s).replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _last_change_type(template: Template) -> str | None:
    entries = [e for e in template.change_log if isinstance(e, dict) and isinstance(e.get("timestamp"), str)]
    if not entries:
        return None
    return max(entries, key=lambda e: e["timestamp"]).get("changeType")


@dataclass
class UpdateDetector:
    store: Store
    catalog: CatalogOps
    recent_window_hours: int = 24
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    def check(self, user_id: str, latest_version: str | None = None) -> UpdateCheckResult:
        latest = latest_version or self.catalog.latest_version()
        now = self.clock()
        window = timedelta(hours=self.recent_window_hours)
        snapshots: dict[str, CatalogSnapshot | None] = {}

        templates = [Template.from_record(r) for r in self.store.list_templates(user_id)]
        result = UpdateCheckResult(latest_version=latest, total_templates=len(templates))

        for t in templates:
            if t.deleted_at or not t.version:
                continue
            mappings = self.store.list_mappings(t.id)
            auto_count = sum(1 for m in mappings if m.get("sync_strategy") == STRATEGY_AUTO)

            if t.version == latest:
                synced = _parse_ts(t.last_synced_at)
                if synced and now - synced <= window and _last_change_type(t) == CHANGE_AUTO_SYNC:
                    result.templates_with_updates.append(
                        TemplateUpdateInfo(
                            template_id=t.id,
                            template_name=t.name,
                            service_type=t.service_type,
                            current_version=t.version,
                            latest_version=latest,
                            has_user_modifications=t.has_user_modifications,
                            auto_sync_instance_count=auto_count,
                            is_outdated=False,
                            recently_auto_synced=True,
                            last_synced_at=t.last_synced_at,
                        )
                    )
                continue

            pending: list[str] = []
            known = True
            if t.service_type not in snapshots:
                snapshots[t.service_type] = self._snapshot(t.service_type, latest)
            snap = snapshots[t.service_type]
            if snap is None:
                known = False
            else:
                pending = pending_group_additions(t, snap)

            needs_approval = bool(pending)
            result.templates_with_updates.append(
                TemplateUpdateInfo(
                    template_id=t.id,
                    template_name=t.name,
                    service_type=t.service_type,
                    current_version=t.version,
                    latest_version=latest,
                    has_user_modifications=t.has_user_modifications,
                    auto_sync_instance_count=auto_count,
                    can_auto_sync=known and auto_count > 0 and not t.has_user_modifications and not needs_approval,
                    needs_approval=needs_approval,
                    pending_additions=pending,
                    last_synced_at=t.last_synced_at,
                )
            )
            result.outdated_templates += 1

        return result

    def _snapshot(self, service: str, version: str) -> CatalogSnapshot | None:
        try:
            return self.catalog.snapshot(service, version)
        except GuideSyncError as e:
            log.warn(f"cannot load {service} catalog {version[:7]} for approval check: {e}")
            return None
