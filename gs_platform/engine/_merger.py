# gs_platform/engine/_merger.py
# three-way merge of a template config with a catalog snapshot.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from ..models import (
    ORIGIN_SYNC,
    ORIGIN_USER,
    MergeResult,
    MergeStats,
    ScoreConflict,
    TemplateConfig,
    TemplateGroup,
    TemplateRule,
    group_default_enabled,
)
from ._scoring import current_score, recommended_score

__all__ = ["merge", "same_structure"]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _canon(v: Any) -> Any:
    if isinstance(v, Mapping):
        return tuple(sorted((str(k), _canon(x)) for k, x in v.items()))
    if isinstance(v, (list, tuple)):
        return tuple(sorted((_canon(x) for x in v), key=repr))
    return v


def same_structure(a: Any, b: Any) -> bool:
    """Deep equality that ignores key and list ordering."""
    return _canon(a) == _canon(b)


def _specs(cfg: Any) -> Any:
    return cfg.get("specifications") if isinstance(cfg, Mapping) else None


def merge(
    current: TemplateConfig,
    latest_rules: Sequence[Mapping[str, Any]],
    latest_groups: Sequence[Mapping[str, Any]],
    *,
    apply_score_updates: bool = False,
    score_set: str | None = None,
    delete_removed: bool = False,
    target_version: str | None = None,
    now: Callable[[], str] = _utc_now,
) -> MergeResult:
    stats = MergeStats()
    warnings: list[str] = []
    conflicts: list[ScoreConflict] = []
    score_set = score_set or "default"
    reason = f"No longer in catalog as of version {target_version or 'unknown'}"

    latest_cf = {str(r["trash_id"]): r for r in latest_rules if r.get("trash_id")}
    latest_grp = {str(g["trash_id"]): g for g in latest_groups if g.get("trash_id")}

    # Rules
    merged_rules: list[TemplateRule] = []
    seen: set[str] = set()
    for cur in current.custom_formats:
        if cur.trash_id in seen:
            continue
        seen.add(cur.trash_id)
        cat = latest_cf.get(cur.trash_id)
        if cat is None:
            if cur.origin == ORIGIN_USER or not delete_removed:
                stats.custom_formats_deprecated += 1
                stats.deprecated_details.append({"trash_id": cur.trash_id, "name": cur.name, "reason": reason})
                if not cur.deprecated:
                    warnings.append(f'Custom format "{cur.name}" ({cur.trash_id}) marked deprecated - {reason}')
                kept = copy.deepcopy(cur)
                kept.deprecated = True
                kept.deprecated_at = cur.deprecated_at or now()
                kept.deprecated_reason = reason
                merged_rules.append(kept)
            else:
                stats.custom_formats_removed += 1
                stats.removed_details.append({"trash_id": cur.trash_id, "name": cur.name})
                warnings.append(f'Custom format "{cur.name}" ({cur.trash_id}) removed - {reason}')
            continue

        name = str(cat.get("name") or cur.name)
        rec = recommended_score(cat, score_set)
        if apply_score_updates:
            if cur.score_override is not None:
                if cur.score_override != rec:
                    stats.scores_skipped_due_to_override += 1
                    conflicts.append(ScoreConflict(cur.trash_id, name, cur.score_override, rec))
            else:
                old = current_score(cur, score_set)
                if old != rec:
                    stats.scores_updated += 1
                    stats.score_change_details.append(
                        {"trash_id": cur.trash_id, "name": name, "old_score": old, "new_score": rec}
                    )

        prev_enabled = cur.conditions_enabled if isinstance(cur.conditions_enabled, Mapping) else {}
        if cur.score_override is not None:
            stats.user_customizations_preserved.append(f"{name}: custom score")
        if any(v is False for v in prev_enabled.values()):
            stats.user_customizations_preserved.append(f"{name}: custom conditions")

        if same_structure(_specs(cur.original_config), _specs(cat)):
            stats.custom_formats_preserved += 1
        else:
            stats.custom_formats_updated += 1
            stats.updated_details.append({"trash_id": cur.trash_id, "name": name})

        conditions = {
            str(s.get("name")): bool(prev_enabled.get(str(s.get("name")), True))
            for s in (cat.get("specifications") or [])
            if isinstance(s, Mapping)
        }
        merged_rules.append(
            TemplateRule(
                trash_id=cur.trash_id,
                name=name,
                original_config=copy.deepcopy(dict(cat)),
                score_override=cur.score_override,
                conditions_enabled=conditions,
                origin=cur.origin or ORIGIN_SYNC,
                added_at=cur.added_at,
            )
        )

    for tid, cat in latest_cf.items():
        if tid in seen:
            continue
        rec = recommended_score(cat, score_set)
        stats.custom_formats_added += 1
        stats.added_details.append({"trash_id": tid, "name": cat.get("name"), "score": rec})
        merged_rules.append(
            TemplateRule(
                trash_id=tid,
                name=str(cat.get("name") or ""),
                original_config=copy.deepcopy(dict(cat)),
                conditions_enabled={
                    str(s.get("name")): True for s in (cat.get("specifications") or []) if isinstance(s, Mapping)
                },
                origin=ORIGIN_SYNC,
                added_at=now(),
            )
        )

    # Groups
    merged_groups: list[TemplateGroup] = []
    seen_g: set[str] = set()
    for cur in current.custom_format_groups:
        if cur.trash_id in seen_g:
            continue
        seen_g.add(cur.trash_id)
        cat = latest_grp.get(cur.trash_id)
        if cat is None:
            if cur.origin == ORIGIN_USER or not delete_removed:
                stats.custom_format_groups_deprecated += 1
                if not cur.deprecated:
                    warnings.append(f'Custom format group "{cur.name}" ({cur.trash_id}) marked deprecated - {reason}')
                kept = copy.deepcopy(cur)
                kept.deprecated = True
                kept.deprecated_at = cur.deprecated_at or now()
                kept.deprecated_reason = reason
                merged_groups.append(kept)
            else:
                stats.custom_format_groups_removed += 1
                warnings.append(f'Custom format group "{cur.name}" ({cur.trash_id}) removed - {reason}')
            continue

        if same_structure(cur.original_config, cat):
            stats.custom_format_groups_preserved += 1
        else:
            stats.custom_format_groups_updated += 1
        merged_groups.append(
            TemplateGroup(
                trash_id=cur.trash_id,
                name=str(cat.get("name") or cur.name),
                original_config=copy.deepcopy(dict(cat)),
                enabled=cur.enabled,
                origin=cur.origin or ORIGIN_SYNC,
                added_at=cur.added_at,
            )
        )

    for tid, cat in latest_grp.items():
        if tid in seen_g:
            continue
        stats.custom_format_groups_added += 1
        merged_groups.append(
            TemplateGroup(
                trash_id=tid,
                name=str(cat.get("name") or ""),
                original_config=copy.deepcopy(dict(cat)),
                enabled=group_default_enabled(cat),
                origin=ORIGIN_SYNC,
                added_at=now(),
            )
        )

    merged = copy.deepcopy(current)
    merged.custom_formats = merged_rules
    merged.custom_format_groups = merged_groups
    return MergeResult(config=merged, stats=stats, warnings=warnings, score_conflicts=conflicts)
