# gs_platform/engine/_types.py
# protocols for the engine's external collaborators.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol

from ..models import CatalogSnapshot, Instance


class ArrOps(Protocol):
    def health_check(self) -> bool: ...
    def list_custom_formats(self) -> list[dict[str, Any]]: ...
    def create_custom_format(self, cf: Mapping[str, Any]) -> dict[str, Any]: ...
    def update_custom_format(self, cf_id: int, cf: Mapping[str, Any]) -> dict[str, Any]: ...
    def list_quality_profiles(self) -> list[dict[str, Any]]: ...
    def create_quality_profile(self, profile: Mapping[str, Any]) -> dict[str, Any]: ...
    def update_quality_profile(self, profile_id: int, profile: Mapping[str, Any]) -> dict[str, Any]: ...
    def quality_profile_schema(self) -> dict[str, Any]: ...


class CatalogOps(Protocol):
    def latest_version(self) -> str: ...
    def resolve_version(self, requested: str | None = None) -> str: ...
    def snapshot(self, service: str, version: str) -> CatalogSnapshot: ...


ClientFactory = Callable[[Instance], ArrOps]
