# gs_platform/engine/_orchestrator.py
# per-template sync workflow and the auto-sync sweep.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .._logging import log as _root_log
from ..errors import DeploymentFailedError, GuideSyncError
from ..models import (
    CHANGE_AUTO_SYNC,
    CHANGE_MANUAL_SYNC,
    STRATEGY_AUTO,
    MergeStats,
    SyncResult,
    Template,
)
from ..store import Store, utc_now_iso
from ._deploy import DeploymentExecutor
from ._logging import Emitter
from ._merger import merge
from ._metrics import SyncMetrics
from ._types import CatalogOps
from ._updates import UpdateDetector
from ._validator import validate

log = _root_log.child("sync")

__all__ = ["SyncOrchestrator", "change_log_entry"]


def change_log_entry(
    change_type: str,
    stats: MergeStats,
    from_version: str | None,
    to_version: str,
    timestamp: str,
) -> dict[str, Any]:
    def _ids(details: list[dict[str, Any]], *keys: str) -> list[dict[str, Any]]:
        out = []
        for d in details:
            row = {"trashId": d.get("trash_id"), "name": d.get("name")}
            for k in keys:
                row[k] = d.get(k)
            out.append(row)
        return out

    return {
        "changeType": change_type,
        "timestamp": timestamp,
        "fromCommitHash": from_version,
        "toCommitHash": to_version,
        "customFormatsAdded": _ids(stats.added_details, "score"),
        "customFormatsRemoved": _ids(stats.removed_details),
        "customFormatsUpdated": _ids(stats.updated_details),
        "customFormatsDeprecated": _ids(stats.deprecated_details, "reason"),
        "scoreChanges": [
            {"trashId": d.get("trash_id"), "name": d.get("name"), "oldScore": d.get("old_score"), "newScore": d.get("new_score")}
            for d in stats.score_change_details
        ],
        "summaryStats": {
            "customFormatsAdded": stats.custom_formats_added,
            "customFormatsRemoved": stats.custom_formats_removed,
            "customFormatsUpdated": stats.custom_formats_updated,
            "customFormatsPreserved": stats.custom_formats_preserved,
            "customFormatsDeprecated": stats.custom_formats_deprecated,
            "customFormatGroupsAdded": stats.custom_format_groups_added,
            "customFormatGroupsRemoved": stats.custom_format_groups_removed,
            "customFormatGroupsUpdated": stats.custom_format_groups_updated,
            "scoresUpdated": stats.scores_updated,
            "scoresSkippedDueToOverride": stats.scores_skipped_due_to_override,
        },
    }


@dataclass
class SyncOrchestrator:
    store: Store
    catalog: CatalogOps
    executor: DeploymentExecutor
    detector: UpdateDetector
    metrics: SyncMetrics = field(default_factory=SyncMetrics)
    emitter: Emitter = field(default_factory=lambda: Emitter(None))
    clock: Callable[[], str] = utc_now_iso

    def sync(
        self,
        template_id: str,
        user_id: str,
        *,
        target_version: str | None = None,
        apply_score_updates: bool | None = None,
        delete_removed: bool | None = None,
        approved_additions: Iterable[str] = (),
        change_type: str = CHANGE_MANUAL_SYNC,
        deploy: bool = True,
    ) -> SyncResult:
        started = self.metrics.start()
        res = self._sync(
            template_id,
            user_id,
            target_version=target_version,
            apply_score_updates=apply_score_updates,
            delete_removed=delete_removed,
            approved_additions=list(approved_additions),
            change_type=change_type,
            deploy=deploy,
        )
        self.metrics.record("sync", started, ok=res.success, error="; ".join(res.errors) or None)
        return res

    def _sync(
        self,
        template_id: str,
        user_id: str,
        *,
        target_version: str | None,
        apply_score_updates: bool | None,
        delete_removed: bool | None,
        approved_additions: list[str],
        change_type: str,
        deploy: bool,
    ) -> SyncResult:
        res = SyncResult(template_id=template_id)

        def _fail(code: str, *errors: str) -> SyncResult:
            res.error_code = code
            res.errors.extend(errors)
            log.warn(f"sync of {template_id} failed ({code}): {'; '.join(errors)}")
            self.emitter.emit("sync:done", template=template_id, ok=False, code=code)
            return res

        # ownership
        rec = self.store.get_template(template_id)
        if not rec or rec.get("deleted_at"):
            return _fail("not_found", f"template {template_id} not found")
        template = Template.from_record(rec)
        if template.user_id != user_id:
            return _fail("not_authorized", f"template {template_id} is not owned by this user")
        res.previous_version = template.version
        self.emitter.emit("sync:start", template=template.id, change_type=change_type)

        # target version + snapshot
        try:
            version = self.catalog.resolve_version(target_version)
            res.new_version = version
            snapshot = self.catalog.snapshot(template.service_type, version)
        except GuideSyncError as e:
            return _fail("sync_failed", f"catalog unavailable: {e}")
        if snapshot.version != version:
            return _fail("sync_failed", f"catalog snapshot is at {snapshot.version}, expected {version}")

        # merge against the rules and groups the template has adopted
        approved = set(approved_additions)
        unknown = approved - set(snapshot.rule_map())
        for tid in sorted(unknown):
            res.warnings.append(f"approved addition {tid} is not in the catalog at {version[:7]}")
        scope = template.config.rule_ids() | approved
        groups_scope = template.config.group_ids()
        settings = template.config.sync_settings
        result = merge(
            template.config,
            [r for r in snapshot.rules if r.get("trash_id") in scope],
            [g for g in snapshot.groups if g.get("trash_id") in groups_scope],
            apply_score_updates=bool(settings.get("applyScoreUpdates", False) if apply_score_updates is None else apply_score_updates),
            score_set=template.config.score_set,
            delete_removed=bool(settings.get("deleteRemovedCFs", False) if delete_removed is None else delete_removed),
            target_version=version,
        )
        problems = validate(result.config)
        if problems:
            return _fail("sync_failed", *problems)

        # persist config + change log together
        now = self.clock()
        entry = change_log_entry(change_type, result.stats, template.version, version, now)
        try:
            self.store.update_template(
                template.id,
                {
                    "config": json.dumps(result.config.to_dict(), ensure_ascii=False),
                    "version": version,
                    "last_synced_at": now,
                    "change_log": json.dumps([*template.change_log, entry], ensure_ascii=False),
                },
            )
        except (GuideSyncError, OSError) as e:
            return _fail("sync_failed", f"cannot persist template: {e}")

        res.success = True
        res.merge_stats = result.stats
        res.warnings.extend(result.warnings)
        res.score_conflicts = result.score_conflicts
        log.info(
            f"synced {template.name} {(template.version or 'none')[:7]} -> {version[:7]}: "
            f"+{result.stats.custom_formats_added} ~{result.stats.custom_formats_updated} "
            f"-{result.stats.custom_formats_removed} deprecated={result.stats.custom_formats_deprecated}"
        )

        if deploy:
            try:
                self.deploy_to_mapped(template.id, user_id, res)
            except DeploymentFailedError as e:
                res.errors.extend(e.errors or [str(e)])

        self.emitter.emit("sync:done", template=template.id, ok=True, version=version, errors=len(res.errors))
        return res

    def deploy_to_mapped(self, template_id: str, user_id: str, res: SyncResult | None = None) -> None:
        """Deploy sequentially to every instance mapped with the auto strategy."""
        failures: list[str] = []
        for m in self.store.list_mappings(template_id):
            if m.get("sync_strategy") != STRATEGY_AUTO:
                continue
            iid = str(m.get("instance_id"))
            try:
                dep = self.executor.deploy_one(template_id, iid, user_id, sync_type="AUTO")
            except GuideSyncError as e:
                log.error(f"auto deploy of {template_id} to {iid} failed: {e}")
                failures.append(f"{iid}: {e}")
                continue
            except Exception as e:
                log.error(f"auto deploy of {template_id} to {iid} crashed: {e}")
                failures.append(f"{iid}: {e}")
                continue
            if res is not None:
                res.deployments.append(dep)
            if not dep.success:
                failures.extend(f"{iid}: {err}" for err in dep.errors)
        if failures:
            raise DeploymentFailedError(
                f"deployment failed for {len(failures)} item(s) of template {template_id}", errors=failures
            )

    def process_auto_updates(self, user_id: str) -> dict[str, Any]:
        check = self.detector.check(user_id)
        out: dict[str, Any] = {
            "latest_version": check.latest_version,
            "processed": 0,
            "synced": 0,
            "failed": 0,
            "needs_attention": [],
            "results": [],
        }
        for info in check.templates_with_updates:
            if not info.is_outdated:
                continue
            if not info.can_auto_sync:
                out["needs_attention"].append(info.template_id)
                continue
            out["processed"] += 1
            try:
                res = self.sync(
                    info.template_id,
                    user_id,
                    target_version=check.latest_version,
                    change_type=CHANGE_AUTO_SYNC,
                )
            except Exception as e:
                log.error(f"auto-sync of {info.template_id} crashed: {e}")
                res = SyncResult(template_id=info.template_id, error_code="sync_failed", errors=[str(e)])
            out["results"].append(res)
            if res.success:
                out["synced"] += 1
            else:
                out["failed"] += 1
        self.emitter.emit("autosync:done", user=user_id, synced=out["synced"], failed=out["failed"])
        return out
