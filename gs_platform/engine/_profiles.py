# gs_platform/engine/_profiles.py
# quality profile bodies: blueprint, cloned and custom strategies, plus item rebuild on update.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from typing import Any

from .._logging import log as _root_log
from ..models import TemplateConfig
from ._payloads import (
    QualityGroup,
    QualityIndex,
    QualityIndividual,
    QualityItem,
    dump_items,
    fallback_cutoff,
    find_cutoff,
    flatten,
    normalize_quality_name,
    parse_items,
    schema_index,
)

log = _root_log.child("profiles")

__all__ = [
    "STRATEGY_BLUEPRINT",
    "STRATEGY_CLONED",
    "STRATEGY_CUSTOM",
    "pick_strategy",
    "build_new_profile",
    "rebuild_items",
    "merge_format_items",
]

STRATEGY_BLUEPRINT = "blueprint"
STRATEGY_CLONED = "cloned"
STRATEGY_CUSTOM = "custom"

GROUP_ID_BASE = 1000

_LANGUAGE_IDS = {"original": -2, "any": -1}


def _custom_config(cfg: TemplateConfig, override: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    cqc = override if override is not None else cfg.custom_quality_config
    if isinstance(cqc, Mapping) and cqc.get("useCustomQualities") and cqc.get("items"):
        return cqc
    return None


def pick_strategy(cfg: TemplateConfig, quality_override: Mapping[str, Any] | None = None) -> str:
    if cfg.complete_quality_profile:
        return STRATEGY_CLONED
    if _custom_config(cfg, quality_override):
        return STRATEGY_CUSTOM
    return STRATEGY_BLUEPRINT


def _language(name: Any) -> dict[str, Any]:
    if not name:
        return {"id": -2, "name": "Original"}
    return {"id": _LANGUAGE_IDS.get(str(name).strip().lower(), 1), "name": str(name)}


# ------------------------------------------------------------
# Item builders
# ------------------------------------------------------------
def blueprint_items(qp: Mapping[str, Any], idx: QualityIndex, *, reverse: bool = False) -> list[QualityItem]:
    raw = list(qp.get("items") or [])
    if reverse:
        raw.reverse()
    out: list[QualityItem] = []
    gid = GROUP_ID_BASE
    for it in raw:
        if not isinstance(it, Mapping):
            continue
        subs = it.get("items")
        if isinstance(subs, list) and subs:
            members = tuple(q for q in (idx.lookup(name=str(n)) for n in subs) if q)
            if members:
                out.append(QualityGroup(gid, str(it.get("name") or ""), bool(it.get("allowed", True)), members))
                gid += 1
        else:
            q = idx.lookup(name=str(it.get("name") or ""))
            if q:
                out.append(q.with_allowed(bool(it.get("allowed", True))))
    return out


def _source_ref(raw: Mapping[str, Any]) -> tuple[int | None, str | None]:
    q = raw.get("quality")
    src = q if isinstance(q, Mapping) else raw
    qid = src.get("id")
    return (int(qid) if qid is not None else None), (str(src["name"]) if src.get("name") else None)


def cloned_items(cloned: Mapping[str, Any], idx: QualityIndex) -> tuple[list[QualityItem], dict[int, int]]:
    """Remap a captured source profile onto the target catalog; returns items and source-id map."""
    out: list[QualityItem] = []
    id_map: dict[int, int] = {}
    gid = GROUP_ID_BASE
    for raw in cloned.get("items") or []:
        if not isinstance(raw, Mapping):
            continue
        subs = raw.get("items")
        if isinstance(subs, list) and subs:
            members: list[QualityIndividual] = []
            for s in subs:
                if not isinstance(s, Mapping):
                    continue
                sid, sname = _source_ref(s)
                q = idx.lookup(sid, sname)
                if q:
                    members.append(q.with_allowed(bool(s.get("allowed", False))))
            if members:
                if raw.get("id") is not None:
                    id_map[int(raw["id"])] = gid
                out.append(QualityGroup(gid, str(raw.get("name") or ""), bool(raw.get("allowed", False)), tuple(members)))
                gid += 1
        else:
            sid, sname = _source_ref(raw)
            q = idx.lookup(sid, sname)
            if q:
                if sid is not None:
                    id_map[sid] = q.id
                out.append(q.with_allowed(bool(raw.get("allowed", False))))
    return out, id_map


def custom_items(custom: Mapping[str, Any], idx: QualityIndex) -> tuple[list[QualityItem], dict[Any, int]]:
    out: list[QualityItem] = []
    id_map: dict[Any, int] = {}
    gid = GROUP_ID_BASE
    for entry in custom.get("items") or []:
        if not isinstance(entry, Mapping):
            continue
        if entry.get("type") == "group":
            g = entry.get("group") or {}
            members = tuple(
                q.with_allowed(False)
                for q in (idx.lookup(name=str(x.get("name") or "")) for x in g.get("qualities") or [] if isinstance(x, Mapping))
                if q
            )
            if members:
                id_map[g.get("id")] = gid
                out.append(QualityGroup(gid, str(g.get("name") or ""), bool(g.get("allowed", False)), members))
                gid += 1
        else:
            it = entry.get("item") or {}
            q = idx.lookup(name=str(it.get("name") or ""))
            if q:
                id_map[it.get("id")] = q.id
                out.append(q.with_allowed(bool(it.get("allowed", False))))
    return out, id_map


# ------------------------------------------------------------
# New profile bodies
# ------------------------------------------------------------
def build_new_profile(
    schema: Mapping[str, Any],
    cfg: TemplateConfig,
    name: str,
    format_items: Sequence[Mapping[str, Any]],
    *,
    quality_override: Mapping[str, Any] | None = None,
    reverse: bool = False,
) -> tuple[str, dict[str, Any]]:
    idx = schema_index(schema.get("items") or [])
    qp = cfg.quality_profile
    body = copy.deepcopy(dict(schema))
    body.pop("id", None)
    body["name"] = name
    body["formatItems"] = [dict(f) for f in format_items]
    strategy = pick_strategy(cfg, quality_override)

    if strategy == STRATEGY_CLONED:
        cloned = cfg.complete_quality_profile or {}
        items, id_map = cloned_items(cloned, idx)
        src_cutoff = cloned.get("cutoff")
        cutoff = id_map.get(int(src_cutoff)) if src_cutoff is not None else None
        if cutoff is None:
            cutoff = fallback_cutoff(items)
            log.warn(f"cutoff {src_cutoff} not found after remap; using {cutoff}")
        body.update(
            upgradeAllowed=bool(cloned.get("upgradeAllowed", True)),
            minFormatScore=int(cloned.get("minFormatScore") or 0),
            cutoffFormatScore=int(cloned.get("cutoffFormatScore") or 10000),
            minUpgradeFormatScore=int(cloned.get("minUpgradeFormatScore") or 1),
        )
        if cloned.get("language"):
            body["language"] = cloned["language"]

    elif strategy == STRATEGY_CUSTOM:
        custom = _custom_config(cfg, quality_override) or {}
        items, id_map = custom_items(custom, idx)
        cutoff = id_map.get(custom.get("cutoffId")) if custom.get("cutoffId") is not None else None
        if cutoff is None:
            cutoff = fallback_cutoff(items)
            log.warn(f"custom cutoff not resolved; using {cutoff}")
        body.update(
            upgradeAllowed=bool(qp.get("upgradeAllowed", True)),
            minFormatScore=int(qp.get("minFormatScore") or 0),
            cutoffFormatScore=int(qp.get("cutoffFormatScore") or 10000),
            minUpgradeFormatScore=int(qp.get("minUpgradeFormatScore") or 1),
        )

    else:
        items = blueprint_items(qp, idx, reverse=reverse)
        cutoff = find_cutoff(items, qp.get("cutoff"))
        if cutoff is None:
            cutoff = fallback_cutoff(items)
            if qp.get("cutoff"):
                log.warn(f"cutoff {qp.get('cutoff')!r} not found; using {cutoff}")
        has_scores = any(int(f.get("score") or 0) != 0 for f in format_items)
        min_score = int(qp.get("minFormatScore") or 0)
        body.update(
            upgradeAllowed=bool(qp.get("upgradeAllowed", True)),
            minFormatScore=min_score if has_scores else 0,
            cutoffFormatScore=int(qp.get("cutoffFormatScore") or 10000),
            minUpgradeFormatScore=int(qp.get("minUpgradeFormatScore") or 1),
            language=_language(qp.get("language")),
        )

    body["items"] = dump_items(items)
    body["cutoff"] = cutoff
    return strategy, body


# ------------------------------------------------------------
# Existing profile refresh
# ------------------------------------------------------------
def rebuild_items(
    existing: Mapping[str, Any],
    cfg: TemplateConfig,
    *,
    quality_override: Mapping[str, Any] | None = None,
) -> tuple[list[dict[str, Any]], int] | None:
    """Items and cutoff for an existing profile; None leaves its items alone."""
    strategy = pick_strategy(cfg, quality_override)
    if strategy == STRATEGY_BLUEPRINT:
        return None
    current = parse_items(existing.get("items") or [])
    idx = QualityIndex()
    for q in flatten(current):
        idx.by_id.setdefault(q.id, q)
        idx.by_name.setdefault(normalize_quality_name(q.name), q)

    if strategy == STRATEGY_CLONED:
        cloned = cfg.complete_quality_profile or {}
        items, id_map = cloned_items(cloned, idx)
        allowed = {normalize_quality_name(i.name): i.allowed for i in current}
        items = [
            QualityGroup(i.id, i.name, allowed.get(normalize_quality_name(i.name), i.allowed), i.items)
            if isinstance(i, QualityGroup)
            else i.with_allowed(allowed.get(normalize_quality_name(i.name), i.allowed))
            for i in items
        ]
        src_cutoff = cloned.get("cutoff")
        cutoff = id_map.get(int(src_cutoff)) if src_cutoff is not None else None
    else:
        custom = _custom_config(cfg, quality_override) or {}
        items, cid_map = custom_items(custom, idx)
        cutoff = cid_map.get(custom.get("cutoffId")) if custom.get("cutoffId") is not None else None

    if not items:
        return None
    if cutoff is None:
        cutoff = fallback_cutoff(items)
    return dump_items(items), cutoff


def merge_format_items(
    existing: Sequence[Mapping[str, Any]],
    scores: Mapping[int, int],
    names: Mapping[int, str] | None = None,
) -> list[dict[str, Any]]:
    """Apply per-format scores onto a profile's formatItems, appending formats it lacks."""
    out: list[dict[str, Any]] = []
    seen: set[int] = set()
    for f in existing:
        fid = f.get("format")
        item = dict(f)
        if isinstance(fid, int) and fid in scores:
            item["score"] = int(scores[fid])
        if isinstance(fid, int):
            seen.add(fid)
        out.append(item)
    for fid, score in scores.items():
        if fid not in seen:
            out.append({"format": fid, "name": (names or {}).get(fid, ""), "score": int(score)})
    return out
