# gs_platform/engine/_differ.py
# preview of what a sync would change, plus historical diffs from the change log.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..models import (
    CatalogSnapshot,
    DiffSummary,
    GroupDiff,
    RuleDiff,
    SuggestedAddition,
    SuggestedScoreChange,
    Template,
    TemplateDiffResult,
    group_members,
)
from ._merger import same_structure
from ._scoring import current_score, recommended_score, resolve_score

__all__ = ["diff", "historical_diff", "latest_entry_for"]

_LOG_KEYS = ("customFormatsAdded", "customFormatsRemoved", "customFormatsUpdated", "scoreChanges")


def _valid_entry(e: Any) -> bool:
    if not isinstance(e, Mapping):
        return False
    if not isinstance(e.get("timestamp"), str) or not isinstance(e.get("toCommitHash"), str):
        return False
    if e.get("fromCommitHash") is not None and not isinstance(e.get("fromCommitHash"), str):
        return False
    if any(not isinstance(e.get(k), list) for k in _LOG_KEYS):
        return False
    return isinstance(e.get("summaryStats"), Mapping)


def _rows(entry: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    return [r for r in entry.get(key) or [] if isinstance(r, Mapping)]


def _int_or_none(v: Any) -> int | None:
    if isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def latest_entry_for(change_log: list[Any], version: str) -> Mapping[str, Any] | None:
    hits = [e for e in change_log if _valid_entry(e) and e["toCommitHash"] == version]
    if not hits:
        return None
    return max(hits, key=lambda e: e["timestamp"])


def historical_diff(template: Template, version: str) -> TemplateDiffResult:
    entry = latest_entry_for(template.change_log, version)
    if entry is None:
        return TemplateDiffResult(
            template_id=template.id,
            template_name=template.name,
            current_version=template.version,
            latest_version=version,
            has_user_modifications=template.has_user_modifications,
            is_historical=True,
        )

    rules: list[RuleDiff] = []
    for cf in _rows(entry, "customFormatsAdded"):
        rules.append(RuleDiff(str(cf.get("trashId")), str(cf.get("name")), "added", new_score=_int_or_none(cf.get("score")), has_specification_changes=True))
    for cf in _rows(entry, "customFormatsRemoved"):
        rules.append(RuleDiff(str(cf.get("trashId")), str(cf.get("name")), "removed"))
    for cf in _rows(entry, "customFormatsUpdated"):
        rules.append(RuleDiff(str(cf.get("trashId")), str(cf.get("name")), "modified", has_specification_changes=True))

    score_set = template.config.score_set
    scores = [
        SuggestedScoreChange(
            str(sc.get("trashId")),
            str(sc.get("name")),
            _int_or_none(sc.get("oldScore")) or 0,
            _int_or_none(sc.get("newScore")) or 0,
            score_set,
        )
        for sc in _rows(entry, "scoreChanges")
    ]
    st = entry["summaryStats"]
    added = _int_or_none(st.get("customFormatsAdded")) or 0
    removed = _int_or_none(st.get("customFormatsRemoved")) or 0
    modified = _int_or_none(st.get("customFormatsUpdated")) or 0
    return TemplateDiffResult(
        template_id=template.id,
        template_name=template.name,
        current_version=entry.get("fromCommitHash"),
        latest_version=version,
        summary=DiffSummary(
            total_changes=added + removed + modified,
            added=added,
            removed=removed,
            modified=modified,
            unchanged=_int_or_none(st.get("customFormatsPreserved")) or 0,
        ),
        rule_diffs=rules,
        suggested_score_changes=scores,
        has_user_modifications=template.has_user_modifications,
        is_historical=True,
        historical_sync_timestamp=entry.get("timestamp"),
    )


def diff(template: Template, snapshot: CatalogSnapshot) -> TemplateDiffResult:
    if template.version and template.version == snapshot.version:
        return historical_diff(template, snapshot.version)

    cfg = template.config
    score_set = cfg.score_set
    latest_cf = snapshot.rule_map()
    latest_grp = snapshot.group_map()
    in_template = cfg.rule_ids()
    summary = DiffSummary()

    rules: list[RuleDiff] = []
    for r in cfg.custom_formats:
        cur = current_score(r, score_set)
        cat = latest_cf.get(r.trash_id)
        if cat is None:
            rules.append(RuleDiff(r.trash_id, r.name, "removed", current_score=cur, current_specifications=r.specifications))
            summary.removed += 1
            continue
        new_specs = list(cat.get("specifications") or [])
        changed = not same_structure(r.specifications, new_specs)
        rules.append(
            RuleDiff(
                r.trash_id,
                str(cat.get("name") or r.name),
                "modified" if changed else "unchanged",
                current_score=cur,
                new_score=resolve_score(r.score_override, score_set, cat.get("trash_scores")),
                current_specifications=r.specifications,
                new_specifications=new_specs,
                has_specification_changes=changed,
            )
        )
        if changed:
            summary.modified += 1
        else:
            summary.unchanged += 1
    summary.total_changes = summary.removed + summary.modified

    groups: list[GroupDiff] = []
    for g in cfg.custom_format_groups:
        cat_g = latest_grp.get(g.trash_id)
        if cat_g is None:
            groups.append(GroupDiff(g.trash_id, g.name, "removed"))
        elif same_structure(g.original_config, cat_g):
            groups.append(GroupDiff(g.trash_id, str(cat_g.get("name") or g.name), "unchanged"))
        else:
            groups.append(GroupDiff(g.trash_id, str(cat_g.get("name") or g.name), "modified"))

    suggestions: list[SuggestedAddition] = []
    offered: set[str] = set()

    def _offer(tid: str, source: str, source_name: str) -> None:
        if tid in in_template or tid in offered:
            return
        cat = latest_cf.get(tid)
        if cat is None:
            return
        offered.add(tid)
        suggestions.append(
            SuggestedAddition(
                trash_id=tid,
                name=str(cat.get("name") or ""),
                recommended_score=recommended_score(cat, score_set),
                source=source,
                source_name=source_name,
                specifications=list(cat.get("specifications") or []),
            )
        )

    for g in cfg.custom_format_groups:
        cat_g = latest_grp.get(g.trash_id)
        if not g.enabled or g.deprecated or cat_g is None:
            continue
        for tid in group_members(cat_g):
            _offer(tid, "cf_group", str(cat_g.get("name") or g.name))

    linked = snapshot.profile(template.source_quality_profile_trash_id)
    if linked and isinstance(linked.get("formatItems"), Mapping):
        for tid in linked["formatItems"].values():
            _offer(str(tid), "quality_profile", str(linked.get("name") or ""))

    score_changes: list[SuggestedScoreChange] = []
    for r in cfg.custom_formats:
        cat = latest_cf.get(r.trash_id)
        if cat is None or r.score_override is not None:
            continue
        cur = current_score(r, score_set)
        rec = recommended_score(cat, score_set)
        if cur != rec:
            score_changes.append(SuggestedScoreChange(r.trash_id, str(cat.get("name") or r.name), cur, rec, score_set))

    return TemplateDiffResult(
        template_id=template.id,
        template_name=template.name,
        current_version=template.version,
        latest_version=snapshot.version,
        summary=summary,
        rule_diffs=rules,
        group_diffs=groups,
        suggested_additions=suggestions,
        suggested_score_changes=score_changes,
        has_user_modifications=template.has_user_modifications,
    )
