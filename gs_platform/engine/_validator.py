# gs_platform/engine/_validator.py
# structural checks on a merged template config.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Mapping

from ..models import TemplateConfig


def validate(cfg: TemplateConfig) -> list[str]:
    errors: list[str] = []
    for i, r in enumerate(cfg.custom_formats):
        label = r.name or r.trash_id or f"#{i}"
        if not (isinstance(r.trash_id, str) and r.trash_id.strip()):
            errors.append(f"custom format {label}: missing trashId")
        if not (isinstance(r.name, str) and r.name.strip()):
            errors.append(f"custom format {label}: missing name")
        if not isinstance(r.conditions_enabled, Mapping):
            errors.append(f"custom format {label}: conditionsEnabled must be an object")
        if not isinstance(r.original_config, Mapping) or not r.original_config:
            errors.append(f"custom format {label}: missing originalConfig")
    for i, g in enumerate(cfg.custom_format_groups):
        label = g.name or g.trash_id or f"#{i}"
        if not (isinstance(g.trash_id, str) and g.trash_id.strip()):
            errors.append(f"custom format group {label}: missing trashId")
        if not (isinstance(g.name, str) and g.name.strip()):
            errors.append(f"custom format group {label}: missing name")
        if not isinstance(g.enabled, bool):
            errors.append(f"custom format group {label}: enabled must be a boolean")
    return errors
