# gs_platform/models.py
# value objects for templates, catalog snapshots and engine results.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from ._logging import log as _root_log

log = _root_log.child("models")

SERVICE_KINDS = ("RADARR", "SONARR")

ORIGIN_SYNC = "trash_sync"
ORIGIN_USER = "user_added"

STRATEGY_AUTO = "auto"
STRATEGY_MANUAL = "manual"
STRATEGY_NOTIFY = "notify"

STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_SUCCESS = "SUCCESS"
STATUS_PARTIAL = "PARTIAL_SUCCESS"
STATUS_FAILED = "FAILED"

CHANGE_AUTO_SYNC = "auto_sync"
CHANGE_MANUAL_SYNC = "manual_sync"


def parse_blob(raw: Any, default: Any, *, what: str, owner: str = "") -> Any:
    """Decode a stored JSON blob; corrupt or mistyped data yields default."""
    if raw is None or raw == "":
        return default
    if isinstance(raw, (dict, list)):
        val = raw
    else:
        try:
            val = json.loads(raw)
        except (TypeError, ValueError) as e:
            log.warn(f"corrupt {what} for {owner or '?'}: {e}; using empty value")
            return default
    if not isinstance(val, type(default)):
        log.warn(f"unexpected {what} shape for {owner or '?'}: {type(val).__name__}; using empty value")
        return default
    return val


def group_members(group: Mapping[str, Any]) -> list[str]:
    out: list[str] = []
    for ref in group.get("custom_formats") or []:
        tid = ref if isinstance(ref, str) else (ref.get("trash_id") if isinstance(ref, Mapping) else None)
        if tid and tid not in out:
            out.append(str(tid))
    return out


def group_default_enabled(group: Mapping[str, Any]) -> bool:
    d = group.get("default")
    return d is True or (isinstance(d, str) and d.strip().lower() == "true")


# ------------------------------------------------------------
# Template config blob
# ------------------------------------------------------------
@dataclass
class TemplateRule:
    trash_id: str
    name: str
    original_config: dict[str, Any]
    score_override: int | None = None
    conditions_enabled: dict[str, bool] = field(default_factory=dict)
    origin: str = ORIGIN_SYNC
    added_at: str | None = None
    deprecated: bool = False
    deprecated_at: str | None = None
    deprecated_reason: str | None = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "TemplateRule":
        so = d.get("scoreOverride")
        ce = d.get("conditionsEnabled")
        return cls(
            trash_id=str(d.get("trashId") or ""),
            name=str(d.get("name") or ""),
            original_config=d.get("originalConfig"),  # type: ignore[arg-type]
            score_override=int(so) if isinstance(so, (int, float)) and not isinstance(so, bool) else None,
            conditions_enabled={} if ce is None else ce,
            origin=str(d.get("origin") or ORIGIN_SYNC),
            added_at=d.get("addedAt"),
            deprecated=bool(d.get("deprecated")),
            deprecated_at=d.get("deprecatedAt"),
            deprecated_reason=d.get("deprecatedReason"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "trashId": self.trash_id,
            "name": self.name,
            "conditionsEnabled": self.conditions_enabled,
            "originalConfig": self.original_config,
            "origin": self.origin,
        }
        if self.score_override is not None:
            out["scoreOverride"] = self.score_override
        if self.added_at:
            out["addedAt"] = self.added_at
        if self.deprecated:
            out["deprecated"] = True
            out["deprecatedAt"] = self.deprecated_at
            out["deprecatedReason"] = self.deprecated_reason
        return out

    @property
    def specifications(self) -> list[dict[str, Any]]:
        oc = self.original_config if isinstance(self.original_config, Mapping) else {}
        return list(oc.get("specifications") or [])


@dataclass
class TemplateGroup:
    trash_id: str
    name: str
    original_config: dict[str, Any]
    enabled: bool = True
    origin: str = ORIGIN_SYNC
    added_at: str | None = None
    deprecated: bool = False
    deprecated_at: str | None = None
    deprecated_reason: str | None = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "TemplateGroup":
        return cls(
            trash_id=str(d.get("trashId") or ""),
            name=str(d.get("name") or ""),
            original_config=d.get("originalConfig") or {},
            enabled=d.get("enabled", True),  # type: ignore[arg-type]
            origin=str(d.get("origin") or ORIGIN_SYNC),
            added_at=d.get("addedAt"),
            deprecated=bool(d.get("deprecated")),
            deprecated_at=d.get("deprecatedAt"),
            deprecated_reason=d.get("deprecatedReason"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "trashId": self.trash_id,
            "name": self.name,
            "enabled": self.enabled,
            "originalConfig": self.original_config,
            "origin": self.origin,
        }
        if self.added_at:
            out["addedAt"] = self.added_at
        if self.deprecated:
            out["deprecated"] = True
            out["deprecatedAt"] = self.deprecated_at
            out["deprecatedReason"] = self.deprecated_reason
        return out

    @property
    def members(self) -> list[str]:
        return group_members(self.original_config if isinstance(self.original_config, Mapping) else {})


_CONFIG_KEYS = (
    "customFormats",
    "customFormatGroups",
    "qualityProfile",
    "customQualityConfig",
    "completeQualityProfile",
    "syncSettings",
)


@dataclass
class TemplateConfig:
    custom_formats: list[TemplateRule] = field(default_factory=list)
    custom_format_groups: list[TemplateGroup] = field(default_factory=list)
    quality_profile: dict[str, Any] = field(default_factory=dict)
    custom_quality_config: dict[str, Any] | None = None
    complete_quality_profile: dict[str, Any] | None = None
    sync_settings: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "TemplateConfig":
        rules = [TemplateRule.from_dict(x) for x in (d.get("customFormats") or []) if isinstance(x, Mapping)]
        groups = [TemplateGroup.from_dict(x) for x in (d.get("customFormatGroups") or []) if isinstance(x, Mapping)]
        cqc = d.get("customQualityConfig")
        cqp = d.get("completeQualityProfile")
        return cls(
            custom_formats=rules,
            custom_format_groups=groups,
            quality_profile=dict(d.get("qualityProfile") or {}),
            custom_quality_config=dict(cqc) if isinstance(cqc, Mapping) else None,
            complete_quality_profile=dict(cqp) if isinstance(cqp, Mapping) else None,
            sync_settings=dict(d.get("syncSettings") or {}),
            extra={k: v for k, v in d.items() if k not in _CONFIG_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.extra)
        out["customFormats"] = [r.to_dict() for r in self.custom_formats]
        out["customFormatGroups"] = [g.to_dict() for g in self.custom_format_groups]
        out["qualityProfile"] = dict(self.quality_profile)
        if self.custom_quality_config is not None:
            out["customQualityConfig"] = self.custom_quality_config
        if self.complete_quality_profile is not None:
            out["completeQualityProfile"] = self.complete_quality_profile
        if self.sync_settings:
            out["syncSettings"] = dict(self.sync_settings)
        return out

    @property
    def score_set(self) -> str:
        return str(self.quality_profile.get("trash_score_set") or "default")

    def rule_ids(self) -> set[str]:
        return {r.trash_id for r in self.custom_formats}

    def group_ids(self) -> set[str]:
        return {g.trash_id for g in self.custom_format_groups}


# ------------------------------------------------------------
# Stored records
# ------------------------------------------------------------
@dataclass
class Template:
    id: str
    user_id: str
    name: str
    service_type: str
    config: TemplateConfig
    version: str | None = None
    has_user_modifications: bool = False
    sync_strategy: str = STRATEGY_NOTIFY
    change_log: list[dict[str, Any]] = field(default_factory=list)
    instance_overrides: dict[str, Any] = field(default_factory=dict)
    source_quality_profile_trash_id: str | None = None
    last_synced_at: str | None = None
    deleted_at: str | None = None

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> "Template":
        tid = str(rec.get("id") or "")
        cfg = parse_blob(rec.get("config"), {}, what="template config", owner=tid)
        return cls(
            id=tid,
            user_id=str(rec.get("user_id") or ""),
            name=str(rec.get("name") or ""),
            service_type=str(rec.get("service_type") or "").upper(),
            config=TemplateConfig.from_dict(cfg),
            version=rec.get("version") or None,
            has_user_modifications=bool(rec.get("has_user_modifications")),
            sync_strategy=str(rec.get("sync_strategy") or STRATEGY_NOTIFY),
            change_log=parse_blob(rec.get("change_log"), [], what="change log", owner=tid),
            instance_overrides=parse_blob(rec.get("instance_overrides"), {}, what="instance overrides", owner=tid),
            source_quality_profile_trash_id=rec.get("source_quality_profile_trash_id") or None,
            last_synced_at=rec.get("last_synced_at") or None,
            deleted_at=rec.get("deleted_at") or None,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "service_type": self.service_type,
            "config": json.dumps(self.config.to_dict(), ensure_ascii=False),
            "version": self.version,
            "has_user_modifications": self.has_user_modifications,
            "sync_strategy": self.sync_strategy,
            "change_log": json.dumps(self.change_log, ensure_ascii=False),
            "instance_overrides": json.dumps(self.instance_overrides, ensure_ascii=False),
            "source_quality_profile_trash_id": self.source_quality_profile_trash_id,
            "last_synced_at": self.last_synced_at,
            "deleted_at": self.deleted_at,
        }

    def overrides_for(self, instance_id: str) -> dict[str, Any]:
        ov = self.instance_overrides.get(instance_id)
        return dict(ov) if isinstance(ov, Mapping) else {}


@dataclass
class Instance:
    id: str
    user_id: str
    label: str
    service: str
    base_url: str
    api_key: str

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> "Instance":
        return cls(
            id=str(rec.get("id") or ""),
            user_id=str(rec.get("user_id") or ""),
            label=str(rec.get("label") or rec.get("id") or ""),
            service=str(rec.get("service") or "").upper(),
            base_url=str(rec.get("base_url") or "").rstrip("/"),
            api_key=str(rec.get("api_key") or ""),
        )

    def to_record(self) -> dict[str, Any]:
        return asdict(self)


# ------------------------------------------------------------
# Catalog
# ------------------------------------------------------------
@dataclass
class CatalogSnapshot:
    service: str
    version: str
    rules: list[dict[str, Any]] = field(default_factory=list)
    groups: list[dict[str, Any]] = field(default_factory=list)
    profiles: list[dict[str, Any]] = field(default_factory=list)

    def rule_map(self) -> dict[str, dict[str, Any]]:
        return {str(r["trash_id"]): r for r in self.rules if r.get("trash_id")}

    def group_map(self) -> dict[str, dict[str, Any]]:
        return {str(g["trash_id"]): g for g in self.groups if g.get("trash_id")}

    def profile(self, trash_id: str | None) -> dict[str, Any] | None:
        if not trash_id:
            return None
        for p in self.profiles:
            if p.get("trash_id") == trash_id:
                return p
        return None


# ------------------------------------------------------------
# Merge results
# ------------------------------------------------------------
@dataclass
class ScoreConflict:
    trash_id: str
    name: str
    current_score: int
    recommended_score: int
    user_has_override: bool = True


@dataclass
class MergeStats:
    custom_formats_added: int = 0
    custom_formats_removed: int = 0
    custom_formats_updated: int = 0
    custom_formats_preserved: int = 0
    custom_formats_deprecated: int = 0
    custom_format_groups_added: int = 0
    custom_format_groups_removed: int = 0
    custom_format_groups_updated: int = 0
    custom_format_groups_preserved: int = 0
    custom_format_groups_deprecated: int = 0
    scores_updated: int = 0
    scores_skipped_due_to_override: int = 0
    user_customizations_preserved: list[str] = field(default_factory=list)
    added_details: list[dict[str, Any]] = field(default_factory=list)
    removed_details: list[dict[str, Any]] = field(default_factory=list)
    updated_details: list[dict[str, Any]] = field(default_factory=list)
    deprecated_details: list[dict[str, Any]] = field(default_factory=list)
    score_change_details: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MergeResult:
    config: TemplateConfig
    stats: MergeStats
    warnings: list[str] = field(default_factory=list)
    score_conflicts: list[ScoreConflict] = field(default_factory=list)


# ------------------------------------------------------------
# Diff results
# ------------------------------------------------------------
@dataclass
class RuleDiff:
    trash_id: str
    name: str
    change_type: str  # added | removed | modified | unchanged
    current_score: int | None = None
    new_score: int | None = None
    current_specifications: list[dict[str, Any]] = field(default_factory=list)
    new_specifications: list[dict[str, Any]] = field(default_factory=list)
    has_specification_changes: bool = False


@dataclass
class GroupDiff:
    trash_id: str
    name: str
    change_type: str


@dataclass
class SuggestedAddition:
    trash_id: str
    name: str
    recommended_score: int
    source: str  # cf_group | quality_profile
    source_name: str
    specifications: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class SuggestedScoreChange:
    trash_id: str
    name: str
    current_score: int
    recommended_score: int
    score_set: str


@dataclass
class DiffSummary:
    total_changes: int = 0
    added: int = 0
    removed: int = 0
    modified: int = 0
    unchanged: int = 0


@dataclass
class TemplateDiffResult:
    template_id: str
    template_name: str
    current_version: str | None
    latest_version: str
    summary: DiffSummary = field(default_factory=DiffSummary)
    rule_diffs: list[RuleDiff] = field(default_factory=list)
    group_diffs: list[GroupDiff] = field(default_factory=list)
    suggested_additions: list[SuggestedAddition] = field(default_factory=list)
    suggested_score_changes: list[SuggestedScoreChange] = field(default_factory=list)
    has_user_modifications: bool = False
    is_historical: bool = False
    historical_sync_timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ------------------------------------------------------------
# Update detection
# ------------------------------------------------------------
@dataclass
class TemplateUpdateInfo:
    template_id: str
    template_name: str
    service_type: str
    current_version: str | None
    latest_version: str
    has_user_modifications: bool
    auto_sync_instance_count: int = 0
    can_auto_sync: bool = False
    needs_approval: bool = False
    pending_additions: list[str] = field(default_factory=list)
    is_outdated: bool = True
    recently_auto_synced: bool = False
    last_synced_at: str | None = None


@dataclass
class UpdateCheckResult:
    latest_version: str
    templates_with_updates: list[TemplateUpdateInfo] = field(default_factory=list)
    total_templates: int = 0
    outdated_templates: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ------------------------------------------------------------
# Deployment / sync results
# ------------------------------------------------------------
@dataclass
class DeploymentResult:
    instance_id: str
    template_id: str
    success: bool = False
    instance_label: str = ""
    created: int = 0
    updated: int = 0
    skipped: int = 0
    orphaned: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    profile_id: int | None = None
    profile_name: str | None = None
    backup_id: str | None = None
    history_id: str | None = None
    status: str = STATUS_FAILED
    error_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BulkDeploymentResult:
    template_id: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: list[DeploymentResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PreviewConflict:
    trash_id: str
    name: str
    conflict_type: str
    template_value: Any = None
    instance_value: Any = None
    suggested_resolution: str = "use_template"
    resolution: str | None = None


@dataclass
class PreviewItem:
    trash_id: str
    name: str
    action: str  # create | update | skip
    remote_id: int | None = None
    conflicts: list[PreviewConflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass
class DeploymentPreview:
    template_id: str
    template_name: str
    instance_id: str
    instance_label: str
    service: str
    instance_reachable: bool = False
    items: list[PreviewItem] = field(default_factory=list)
    new_count: int = 0
    update_count: int = 0
    skip_count: int = 0
    total_conflicts: int = 0
    unresolved_conflicts: int = 0

    @property
    def can_deploy(self) -> bool:
        return self.instance_reachable and self.unresolved_conflicts == 0

    @property
    def requires_conflict_resolution(self) -> bool:
        return self.unresolved_conflicts > 0

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for row, item in zip(out["items"], self.items):
            row["has_conflicts"] = item.has_conflicts
        out["can_deploy"] = self.can_deploy
        out["requires_conflict_resolution"] = self.requires_conflict_resolution
        return out


@dataclass
class RestoreResult:
    backup_id: str
    instance_id: str
    success: bool = False
    restored: int = 0
    recreated: int = 0
    failed: int = 0
    left_in_place: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SyncResult:
    template_id: str
    success: bool = False
    previous_version: str | None = None
    new_version: str | None = None
    error_code: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    merge_stats: MergeStats | None = None
    score_conflicts: list[ScoreConflict] = field(default_factory=list)
    deployments: list[DeploymentResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
