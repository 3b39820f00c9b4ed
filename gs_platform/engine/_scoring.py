# gs_platform/engine/_scoring.py
# effective score resolution across override layers.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..models import TemplateRule


def _as_int(v: Any) -> int | None:
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v)
    return None


def resolve_score(
    score_override: int | None,
    score_set: str | None,
    trash_scores: Mapping[str, Any] | None,
    instance_override: int | None = None,
) -> int:
    """Priority: instance override, template override, score-set score, catalog default, 0."""
    for v in (instance_override, score_override):
        n = _as_int(v)
        if n is not None:
            return n
    scores = trash_scores if isinstance(trash_scores, Mapping) else {}
    if score_set:
        n = _as_int(scores.get(score_set))
        if n is not None:
            return n
    n = _as_int(scores.get("default"))
    return n if n is not None else 0


def recommended_score(catalog_rule: Mapping[str, Any] | None, score_set: str | None) -> int:
    if not isinstance(catalog_rule, Mapping):
        return 0
    return resolve_score(None, score_set, catalog_rule.get("trash_scores"))


def current_score(rule: TemplateRule, score_set: str | None, instance_override: int | None = None) -> int:
    oc = rule.original_config if isinstance(rule.original_config, Mapping) else {}
    return resolve_score(rule.score_override, score_set, oc.get("trash_scores"), instance_override)
