# gs_platform/engine/_deploy.py
# push a merged template to remote instances: rules, quality profile, orphans, audit trail.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
import threading
from collections.abc import Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from .._logging import log as _root_log
from ..errors import (
    DeploymentFailedError,
    GuideSyncError,
    NotAuthorizedError,
    NotFoundError,
    UnreachableError,
    ValidationError,
)
from ..models import (
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    STRATEGY_NOTIFY,
    BulkDeploymentResult,
    DeploymentPreview,
    DeploymentResult,
    Instance,
    PreviewConflict,
    PreviewItem,
    RestoreResult,
    Template,
    TemplateRule,
    parse_blob,
)
from ..store import Store, utc_now_iso
from ._logging import Emitter
from ._merger import same_structure
from ._metrics import SyncMetrics
from ._payloads import comparable_specs, extract_trash_id, rule_to_remote
from ._profiles import build_new_profile, merge_format_items, rebuild_items
from ._scoring import resolve_score
from ._types import ClientFactory

log = _root_log.child("deploy")

__all__ = ["DeploymentExecutor", "KEEP_EXISTING", "USE_TEMPLATE", "backup_formats"]

KEEP_EXISTING = "keep_existing"
USE_TEMPLATE = "use_template"
CONFLICT_SPECIFICATION = "specification_mismatch"


def backup_formats(rec: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Custom formats held by a backup record: a bare list or {"customFormats": [...]}."""
    raw = rec.get("snapshot")
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except ValueError as e:
        raise ValidationError(f"backup {rec.get('id')} contains invalid data: {e}") from e
    if isinstance(data, Mapping):
        data = data.get("customFormats") or []
    if not isinstance(data, list):
        raise ValidationError(f"backup {rec.get('id')} contains no custom format list")
    return [dict(cf) for cf in data if isinstance(cf, Mapping) and cf.get("name")]


def effective_rules(template: Template, instance_id: str) -> list[TemplateRule]:
    """Template rules with this instance's selection and score overrides applied."""
    ov = template.overrides_for(instance_id)
    selection = ov.get("cfSelectionOverrides") if isinstance(ov.get("cfSelectionOverrides"), Mapping) else {}
    scores = ov.get("cfScoreOverrides") if isinstance(ov.get("cfScoreOverrides"), Mapping) else {}
    out: list[TemplateRule] = []
    for r in template.config.custom_formats:
        sel = selection.get(r.trash_id)
        if isinstance(sel, Mapping) and sel.get("enabled") is False:
            continue
        so = scores.get(r.trash_id)
        if isinstance(so, int) and not isinstance(so, bool):
            r = replace(r, score_override=so)
        out.append(r)
    return out


@dataclass
class _RemoteIndex:
    by_tid: dict[str, dict[str, Any]] = field(default_factory=dict)
    by_name: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def build(cls, remote: Iterable[Mapping[str, Any]]) -> "_RemoteIndex":
        idx = cls()
        for cf in remote:
            tid = extract_trash_id(cf)
            if tid:
                idx.by_tid.setdefault(tid, dict(cf))
            if cf.get("name"):
                idx.by_name.setdefault(str(cf["name"]), dict(cf))
        return idx

    def find(self, trash_id: str | None, name: str | None) -> dict[str, Any] | None:
        hit = self.by_tid.get(trash_id) if trash_id else None
        if hit is None and name:
            hit = self.by_name.get(name)
        return hit


@dataclass
class DeploymentExecutor:
    store: Store
    client_factory: ClientFactory
    default_profile_name: str = "TRaSH Guides HD/UHD"
    backup_retention_days: int = 30
    max_workers: int = 4
    reverse_quality_items: bool = False
    metrics: SyncMetrics = field(default_factory=SyncMetrics)
    emitter: Emitter = field(default_factory=lambda: Emitter(None))

    _locks: dict[tuple[str, str], threading.Lock] = field(init=False, default_factory=dict)
    _locks_guard: threading.Lock = field(init=False, default_factory=threading.Lock)

    def _lock_for(self, template_id: str, instance_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((template_id, instance_id), threading.Lock())

    # ------------------------------------------------------------
    # Loading / validation
    # ------------------------------------------------------------
    def _load(self, template_id: str, instance_id: str, user_id: str) -> tuple[Template, Instance]:
        trec = self.store.get_template(template_id)
        if not trec or trec.get("deleted_at"):
            raise NotFoundError(f"template {template_id} not found")
        template = Template.from_record(trec)
        if template.user_id != user_id:
            raise NotAuthorizedError(f"template {template_id} is not owned by this user")

        irec = self.store.get_instance(instance_id)
        if not irec:
            raise NotFoundError(f"instance {instance_id} not found")
        instance = Instance.from_record(irec)
        if instance.user_id != user_id:
            raise NotAuthorizedError(f"instance {instance_id} is not owned by this user")

        if not template.service_type or template.service_type != instance.service:
            raise ValidationError(
                f"service mismatch: template is {template.service_type or '?'}, instance is {instance.service or '?'}"
            )
        return template, instance

    def _profile_name(self, template: Template, mapping: Mapping[str, Any] | None) -> str:
        if mapping and mapping.get("profile_name"):
            return str(mapping["profile_name"])
        return str(template.config.quality_profile.get("name") or template.name or self.default_profile_name)

    def _mapping(self, template_id: str, instance_id: str) -> dict[str, Any] | None:
        for m in self.store.list_mappings(template_id):
            if m.get("instance_id") == instance_id:
                return m
        return None

    def _previous_rules(self, template_id: str, instance_id: str) -> list[dict[str, Any]]:
        prev = self.store.latest_successful_deployment(template_id, instance_id)
        if not prev:
            return []
        snap = parse_blob(prev.get("template_snapshot"), {}, what="deployment snapshot", owner=str(prev.get("id")))
        return [r for r in (snap.get("customFormats") or []) if isinstance(r, Mapping)]

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------
    def deploy_one(
        self,
        template_id: str,
        instance_id: str,
        user_id: str,
        conflict_resolutions: Mapping[str, str] | None = None,
        *,
        sync_type: str = "MANUAL",
    ) -> DeploymentResult:
        started = self.metrics.start()
        try:
            with self._lock_for(template_id, instance_id):
                res = self._deploy(template_id, instance_id, user_id, dict(conflict_resolutions or {}), sync_type)
        except Exception as e:
            self.metrics.record("deploy", started, ok=False, error=str(e))
            raise
        self.metrics.record("deploy", started, ok=res.success, error="; ".join(res.errors) or None)
        return res

    def deploy_many(
        self,
        template_id: str,
        instance_ids: Sequence[str],
        user_id: str,
        conflict_resolutions: Mapping[str, Mapping[str, str]] | None = None,
    ) -> BulkDeploymentResult:
        ids = list(dict.fromkeys(instance_ids))
        bulk = BulkDeploymentResult(template_id=template_id, total=len(ids))
        if not ids:
            return bulk
        per_instance = conflict_resolutions or {}
        results: dict[str, DeploymentResult] = {}

        workers = max(1, min(self.max_workers, len(ids)))
        with ThreadPoolExecutor(max_workers=workers) as ex:
            futs = {
                ex.submit(self.deploy_one, template_id, iid, user_id, per_instance.get(iid)): iid
                for iid in ids
            }
            for fut in as_completed(futs):
                iid = futs[fut]
                try:
                    results[iid] = fut.result()
                except GuideSyncError as e:
                    log.warn(f"deployment of {template_id} to {iid} failed: {e}")
                    results[iid] = DeploymentResult(
                        instance_id=iid, template_id=template_id, errors=[str(e)], error_code=e.code
                    )
                except Exception as e:
                    log.error(f"deployment of {template_id} to {iid} crashed: {e}")
                    results[iid] = DeploymentResult(
                        instance_id=iid, template_id=template_id, errors=[str(e)], error_code="deployment_failed"
                    )

        bulk.results = [results[i] for i in ids]
        bulk.successful = sum(1 for r in bulk.results if r.success)
        bulk.failed = bulk.total - bulk.successful
        return bulk

    def preview(
        self,
        template_id: str,
        instance_id: str,
        user_id: str,
        conflict_resolutions: Mapping[str, str] | None = None,
    ) -> DeploymentPreview:
        """What deploy_one would do on this instance; nothing is written."""
        template, instance = self._load(template_id, instance_id, user_id)
        client = self.client_factory(instance)
        out = DeploymentPreview(template.id, template.name, instance.id, instance.label, instance.service)

        remote: list[dict[str, Any]] = []
        try:
            if client.health_check():
                remote = client.list_custom_formats()
                out.instance_reachable = True
        except GuideSyncError as e:
            log.warn(f"preview cannot read custom formats from {instance.label}: {e}")
        index = _RemoteIndex.build(remote)
        resolutions = dict(conflict_resolutions or {})

        for rule in effective_rules(template, instance.id):
            existing = index.find(rule.trash_id, rule.name)
            if existing is None:
                out.items.append(PreviewItem(rule.trash_id, rule.name, "create"))
                out.new_count += 1
                continue
            choice = resolutions.get(rule.trash_id) or resolutions.get(rule.name)
            if choice not in (KEEP_EXISTING, USE_TEMPLATE):
                choice = None
            item = PreviewItem(
                rule.trash_id,
                rule.name,
                "skip" if choice == KEEP_EXISTING else "update",
                remote_id=int(existing["id"]) if existing.get("id") is not None else None,
            )
            wanted = comparable_specs(rule_to_remote(rule)["specifications"])
            have = comparable_specs(existing.get("specifications"))
            if not same_structure(wanted, have):
                item.conflicts.append(
                    PreviewConflict(rule.trash_id, rule.name, CONFLICT_SPECIFICATION, wanted, have, USE_TEMPLATE, choice)
                )
                out.total_conflicts += 1
                if choice is None:
                    out.unresolved_conflicts += 1
            if item.action == "skip":
                out.skip_count += 1
            else:
                out.update_count += 1
            out.items.append(item)
        return out

    def restore_backup(self, backup_id: str, user_id: str) -> RestoreResult:
        """Put an instance's custom formats back to a backup; formats added since are left in place."""
        started = self.metrics.start()
        try:
            res = self._restore(backup_id, user_id)
        except Exception as e:
            self.metrics.record("restore", started, ok=False, error=str(e))
            raise
        self.metrics.record("restore", started, ok=res.success, error="; ".join(res.errors) or None)
        return res

    # ------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------
    def _deploy(
        self,
        template_id: str,
        instance_id: str,
        user_id: str,
        resolutions: dict[str, str],
        sync_type: str,
    ) -> DeploymentResult:
        template, instance = self._load(template_id, instance_id, user_id)
        client = self.client_factory(instance)
        res = DeploymentResult(instance_id=instance.id, template_id=template.id, instance_label=instance.label)
        self.emitter.emit("deploy:start", template=template.id, instance=instance.id)

        try:
            before = client.list_custom_formats()
        except UnreachableError:
            raise
        except GuideSyncError as e:
            raise DeploymentFailedError(f"cannot read custom formats from {instance.label}: {e}") from e

        expires = None
        if self.backup_retention_days > 0:
            expires = (datetime.now(timezone.utc) + timedelta(days=self.backup_retention_days)).isoformat(timespec="seconds")
        backup_id, deployment_id, history_id = self.store.create_backup_and_history(
            {"instance_id": instance.id, "user_id": user_id, "template_id": template.id, "snapshot": json.dumps(before), "expires_at": expires},
            {"template_id": template.id, "instance_id": instance.id, "user_id": user_id, "status": STATUS_IN_PROGRESS, "template_snapshot": None},
            {"template_id": template.id, "instance_id": instance.id, "user_id": user_id, "sync_type": sync_type, "status": STATUS_IN_PROGRESS},
        )
        res.backup_id, res.history_id = backup_id, deployment_id

        try:
            if not client.health_check():
                raise UnreachableError(f"instance {instance.label} is unreachable")

            rules = effective_rules(template, instance.id)
            self._deploy_rules(client, rules, _RemoteIndex.build(before), resolutions, res)

            mapping = self._mapping(template.id, instance.id)
            self._sync_profile(client, template, instance, rules, resolutions, mapping, res)

            if res.profile_id is not None:
                self.store.upsert_mapping(
                    template.id,
                    instance.id,
                    {
                        "profile_id": res.profile_id,
                        "profile_name": res.profile_name,
                        "sync_strategy": (mapping or {}).get("sync_strategy") or STRATEGY_NOTIFY,
                        "last_synced_at": utc_now_iso(),
                    },
                )

            res.success = not res.errors
            res.status = STATUS_SUCCESS if res.success else STATUS_PARTIAL
            snapshot = template.config.to_dict()
            snapshot["customFormats"] = [r.to_dict() for r in rules]
            self.store.finalize_history(
                deployment_id,
                history_id,
                {
                    "status": res.status,
                    "applied": res.created + res.updated,
                    "created": res.created,
                    "updated": res.updated,
                    "failed": len(res.errors),
                    "skipped": res.skipped,
                    "orphaned": list(res.orphaned),
                    "errors": list(res.errors),
                    "template_snapshot": json.dumps(snapshot, ensure_ascii=False),
                },
            )
        except Exception as e:
            log.error(f"deployment of {template.id} to {instance.label} failed: {e}")
            try:
                self.store.finalize_history(
                    deployment_id,
                    history_id,
                    {"status": STATUS_FAILED, "errors": [*res.errors, str(e)], "applied": res.created + res.updated},
                )
            except (GuideSyncError, OSError) as fe:
                log.error(f"cannot mark deployment {deployment_id} as failed: {fe}")
            self.emitter.emit("deploy:done", template=template.id, instance=instance.id, status=STATUS_FAILED)
            raise

        log.info(
            f"deployed {template.name} to {instance.label}: created={res.created} updated={res.updated} "
            f"skipped={res.skipped} orphaned={len(res.orphaned)} errors={len(res.errors)}"
        )
        self.emitter.emit("deploy:done", template=template.id, instance=instance.id, status=res.status)
        return res

    def _restore(self, backup_id: str, user_id: str) -> RestoreResult:
        rec = self.store.get_backup(backup_id)
        if not rec:
            raise NotFoundError(f"backup {backup_id} not found")
        if rec.get("user_id") != user_id:
            raise NotAuthorizedError(f"backup {backup_id} is not owned by this user")
        irec = self.store.get_instance(str(rec.get("instance_id") or ""))
        if not irec:
            raise NotFoundError(f"instance {rec.get('instance_id')} not found")
        instance = Instance.from_record(irec)
        if instance.user_id != user_id:
            raise NotAuthorizedError(f"instance {instance.id} is not owned by this user")

        saved = backup_formats(rec)
        client = self.client_factory(instance)
        res = RestoreResult(backup_id=backup_id, instance_id=instance.id)
        with self._lock_for(str(rec.get("template_id") or ""), instance.id):
            if not client.health_check():
                raise UnreachableError(f"instance {instance.label} is unreachable")
            current = client.list_custom_formats()
            by_id = {c["id"]: c for c in current if c.get("id") is not None}
            index = _RemoteIndex.build(current)
            matched: set[Any] = set()
            for cf in saved:
                name = str(cf.get("name") or "")
                existing = by_id.get(cf.get("id")) or index.find(extract_trash_id(cf), name)
                body = {k: v for k, v in cf.items() if k != "id"}
                try:
                    if existing is not None and existing.get("id") is not None:
                        matched.add(existing["id"])
                        client.update_custom_format(int(existing["id"]), body)
                        res.restored += 1
                    else:
                        client.create_custom_format(body)
                        res.recreated += 1
                except GuideSyncError as e:
                    log.warn(f"restoring custom format {name!r} on {instance.label} failed: {e}")
                    res.failed += 1
                    res.errors.append(f'Failed to restore "{name}": {e}')
            res.left_in_place = [str(c.get("name") or c.get("id")) for c in current if c.get("id") not in matched]

        res.success = res.failed == 0
        self.store.record_restore(
            backup_id,
            {"restored": res.restored, "recreated": res.recreated, "failed": res.failed, "errors": list(res.errors)},
        )
        log.info(
            f"restored backup {backup_id} to {instance.label}: restored={res.restored} "
            f"recreated={res.recreated} failed={res.failed} left_in_place={len(res.left_in_place)}"
        )
        self.emitter.emit("restore:done", backup=backup_id, instance=instance.id, ok=res.success)
        return res

    def _deploy_rules(
        self,
        client: Any,
        rules: Sequence[TemplateRule],
        index: _RemoteIndex,
        resolutions: Mapping[str, str],
        res: DeploymentResult,
    ) -> None:
        for rule in rules:
            existing = index.find(rule.trash_id, rule.name)
            choice = resolutions.get(rule.trash_id) or resolutions.get(rule.name)
            if existing and choice == KEEP_EXISTING:
                res.skipped += 1
                continue
            body = rule_to_remote(rule)
            try:
                if existing and existing.get("id") is not None:
                    merged = dict(existing)
                    merged.update(name=body["name"], specifications=body["specifications"])
                    client.update_custom_format(int(existing["id"]), merged)
                    res.updated += 1
                else:
                    client.create_custom_format(body)
                    res.created += 1
            except GuideSyncError as e:
                log.warn(f"custom format {rule.name!r} failed: {e}")
                res.errors.append(f'Failed to deploy "{rule.name}": {e}')
                res.skipped += 1

    def _sync_profile(
        self,
        client: Any,
        template: Template,
        instance: Instance,
        rules: Sequence[TemplateRule],
        resolutions: Mapping[str, str],
        mapping: Mapping[str, Any] | None,
        res: DeploymentResult,
    ) -> None:
        cfg = template.config
        quality_override = template.overrides_for(instance.id).get("qualityConfigOverride")
        if not isinstance(quality_override, Mapping):
            quality_override = None
        name = self._profile_name(template, mapping)
        try:
            remote_cfs = _RemoteIndex.build(client.list_custom_formats())
            profiles = client.list_quality_profiles()
            target = None
            if mapping and mapping.get("profile_id") is not None:
                target = next((p for p in profiles if p.get("id") == mapping["profile_id"]), None)
            if target is None:
                target = next((p for p in profiles if p.get("name") == name), None)

            overrides: dict[int, int] = {}
            existing_scores: dict[int, int] = {}
            if target is not None:
                for o in self.store.list_score_overrides(instance.id, int(target["id"])):
                    overrides[int(o["custom_format_id"])] = int(o["score"])
                for f in target.get("formatItems") or []:
                    if isinstance(f.get("format"), int) and isinstance(f.get("score"), int):
                        existing_scores[f["format"]] = f["score"]

            scores: dict[int, int] = {}
            names: dict[int, str] = {}
            for rule in rules:
                cf = remote_cfs.find(rule.trash_id, rule.name)
                if not cf or cf.get("id") is None:
                    continue
                cf_id = int(cf["id"])
                names[cf_id] = str(cf.get("name") or rule.name)
                choice = resolutions.get(rule.trash_id) or resolutions.get(rule.name)
                if choice == KEEP_EXISTING and cf_id in existing_scores:
                    scores[cf_id] = existing_scores[cf_id]
                    continue
                oc = rule.original_config if isinstance(rule.original_config, Mapping) else {}
                scores[cf_id] = resolve_score(rule.score_override, cfg.score_set, oc.get("trash_scores"), overrides.get(cf_id))

            current_ids = {r.trash_id for r in rules}
            current_names = {r.name for r in rules}
            for prev in self._previous_rules(template.id, instance.id):
                ptid, pname = prev.get("trashId"), prev.get("name")
                if ptid in current_ids or pname in current_names:
                    continue
                cf = remote_cfs.find(ptid, pname)
                if not cf or cf.get("id") is None or int(cf["id"]) in scores:
                    continue
                scores[int(cf["id"])] = 0
                names[int(cf["id"])] = str(cf.get("name") or pname)
                res.orphaned.append(str(cf.get("name") or pname))
                res.warnings.append(f'Neutralized orphaned custom format "{cf.get("name") or pname}" (score set to 0)')

            if target is None:
                schema = client.quality_profile_schema()
                format_items = merge_format_items(schema.get("formatItems") or [], scores, names)
                strategy, body = build_new_profile(
                    schema, cfg, name, format_items, quality_override=quality_override, reverse=self.reverse_quality_items
                )
                created = client.create_quality_profile(body)
                res.profile_id = int(created.get("id")) if created.get("id") is not None else None
                res.profile_name = str(created.get("name") or name)
                log.info(f"created quality profile {name!r} on {instance.label} ({strategy})")
            else:
                body = dict(target)
                body["formatItems"] = merge_format_items(target.get("formatItems") or [], scores, names)
                rebuilt = rebuild_items(target, cfg, quality_override=quality_override)
                if rebuilt is not None:
                    body["items"], body["cutoff"] = rebuilt
                client.update_quality_profile(int(target["id"]), body)
                res.profile_id = int(target["id"])
                res.profile_name = str(target.get("name") or name)
        except GuideSyncError as e:
            log.warn(f"quality profile sync failed on {instance.label}: {e}")
            res.errors.append(f"Quality profile sync failed: {e}")
