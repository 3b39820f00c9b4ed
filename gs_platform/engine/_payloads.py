# gs_platform/engine/_payloads.py
# remote payload shapes: specification fields, quality item trees, rule identity.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from ..models import TemplateRule


# ------------------------------------------------------------
# Specification fields: object-of-fields vs list-of-pairs
# ------------------------------------------------------------
@dataclass(frozen=True)
class FieldMap:
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldPairs:
    pairs: tuple[tuple[str, Any], ...] = ()


Fields = Union[FieldMap, FieldPairs]


def parse_fields(raw: Any) -> Fields:
    if isinstance(raw, Mapping):
        return FieldMap(dict(raw))
    if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        pairs = tuple(
            (str(p.get("name")), p.get("value"))
            for p in raw
            if isinstance(p, Mapping) and p.get("name") is not None
        )
        return FieldPairs(pairs)
    return FieldMap({})


def to_pairs(fields: Fields) -> list[dict[str, Any]]:
    if isinstance(fields, FieldPairs):
        return [{"name": k, "value": v} for k, v in fields.pairs]
    return [{"name": k, "value": v} for k, v in fields.values.items()]


def to_map(fields: Fields) -> dict[str, Any]:
    if isinstance(fields, FieldMap):
        return dict(fields.values)
    return {k: v for k, v in fields.pairs}


def spec_to_remote(spec: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "name": spec.get("name"),
        "implementation": spec.get("implementation"),
        "negate": bool(spec.get("negate", False)),
        "required": bool(spec.get("required", False)),
        "fields": to_pairs(parse_fields(spec.get("fields"))),
    }


def comparable_specs(specs: Any) -> list[dict[str, Any]]:
    """Specifications reduced to the fields both sides carry, fields as a plain map."""
    out: list[dict[str, Any]] = []
    for s in specs if isinstance(specs, Sequence) and not isinstance(specs, (str, bytes)) else []:
        if not isinstance(s, Mapping):
            continue
        row = spec_to_remote(s)
        row["fields"] = to_map(parse_fields(s.get("fields")))
        out.append(row)
    return out


def rule_to_remote(rule: TemplateRule) -> dict[str, Any]:
    """Remote custom-format body; disabled conditions are left out."""
    enabled = rule.conditions_enabled if isinstance(rule.conditions_enabled, Mapping) else {}
    specs = [
        spec_to_remote(s)
        for s in rule.specifications
        if isinstance(s, Mapping) and enabled.get(str(s.get("name")), True) is not False
    ]
    oc = rule.original_config if isinstance(rule.original_config, Mapping) else {}
    return {
        "name": rule.name,
        "includeCustomFormatWhenRenaming": bool(oc.get("includeCustomFormatWhenRenaming", False)),
        "specifications": specs,
    }


# ------------------------------------------------------------
# Rule identity on the remote side
# ------------------------------------------------------------
_NAME_ID = re.compile(r"\[([a-f0-9-]{32,36})\]$", re.IGNORECASE)


def extract_trash_id(remote_cf: Mapping[str, Any]) -> str | None:
    direct = remote_cf.get("trash_id")
    if direct:
        return str(direct)
    for spec in remote_cf.get("specifications") or []:
        if not isinstance(spec, Mapping):
            continue
        fm = to_map(parse_fields(spec.get("fields")))
        tid = fm.get("trash_id") or fm.get("trashId")
        if tid:
            return str(tid)
    m = _NAME_ID.search(str(remote_cf.get("name") or "").strip())
    return m.group(1).lower() if m else None


# ------------------------------------------------------------
# Quality items: {Individual, Group}
# ------------------------------------------------------------
def normalize_quality_name(name: str) -> str:
    return re.sub(r"[\s-]", "", str(name or "")).lower()


@dataclass(frozen=True)
class QualityIndividual:
    id: int
    name: str
    allowed: bool = False
    source: str | None = None
    resolution: int | None = None

    def with_allowed(self, allowed: bool) -> "QualityIndividual":
        return QualityIndividual(self.id, self.name, bool(allowed), self.source, self.resolution)


@dataclass(frozen=True)
class QualityGroup:
    id: int
    name: str
    allowed: bool
    items: tuple[QualityIndividual, ...] = ()


QualityItem = Union[QualityIndividual, QualityGroup]


def _individual(raw: Mapping[str, Any]) -> QualityIndividual | None:
    q = raw.get("quality")
    src = q if isinstance(q, Mapping) else raw
    qid, name = src.get("id"), src.get("name")
    if qid is None or not name:
        return None
    return QualityIndividual(
        id=int(qid),
        name=str(name),
        allowed=bool(raw.get("allowed", False)),
        source=src.get("source"),
        resolution=src.get("resolution"),
    )


def parse_items(raw_items: Iterable[Any]) -> list[QualityItem]:
    """Remote profile items; a node with sub-items is a group."""
    out: list[QualityItem] = []
    for raw in raw_items or []:
        if not isinstance(raw, Mapping):
            continue
        subs = raw.get("items")
        if isinstance(subs, list) and subs:
            members = tuple(m for m in (_individual(s) for s in subs if isinstance(s, Mapping)) if m)
            out.append(QualityGroup(int(raw.get("id") or 0), str(raw.get("name") or ""), bool(raw.get("allowed", False)), members))
        else:
            ind = _individual(raw)
            if ind:
                out.append(ind)
    return out


def _dump_individual(q: QualityIndividual) -> dict[str, Any]:
    quality: dict[str, Any] = {"id": q.id, "name": q.name}
    if q.source is not None:
        quality["source"] = q.source
    if q.resolution is not None:
        quality["resolution"] = q.resolution
    return {"quality": quality, "items": [], "allowed": q.allowed}


def dump_items(items: Iterable[QualityItem]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for it in items:
        if isinstance(it, QualityGroup):
            out.append({"id": it.id, "name": it.name, "allowed": it.allowed, "items": [_dump_individual(m) for m in it.items]})
        else:
            out.append(_dump_individual(it))
    return out


def flatten(items: Iterable[QualityItem]) -> list[QualityIndividual]:
    out: list[QualityIndividual] = []
    for it in items:
        if isinstance(it, QualityGroup):
            out.extend(it.items)
        else:
            out.append(it)
    return out


@dataclass
class QualityIndex:
    by_id: dict[int, QualityIndividual] = field(default_factory=dict)
    by_name: dict[str, QualityIndividual] = field(default_factory=dict)

    def lookup(self, qid: int | None = None, name: str | None = None) -> QualityIndividual | None:
        hit = self.by_id.get(qid) if qid is not None else None
        if hit is None and name:
            hit = self.by_name.get(normalize_quality_name(name))
        return hit


def schema_index(schema_items: Iterable[Any]) -> QualityIndex:
    idx = QualityIndex()
    for q in flatten(parse_items(schema_items)):
        q = q.with_allowed(False)
        idx.by_id.setdefault(q.id, q)
        idx.by_name.setdefault(normalize_quality_name(q.name), q)
    return idx


def find_cutoff(items: Sequence[QualityItem], name: str | None) -> int | None:
    """Cutoff id by quality name; a group member resolves to its group."""
    if not name:
        return None
    want = normalize_quality_name(name)
    for it in items:
        if normalize_quality_name(it.name) == want:
            return it.id
        if isinstance(it, QualityGroup) and any(normalize_quality_name(m.name) == want for m in it.items):
            return it.id
    return None


def fallback_cutoff(items: Sequence[QualityItem]) -> int:
    return items[-1].id if items else 1
