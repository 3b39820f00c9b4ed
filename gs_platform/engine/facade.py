# gs_platform/engine/facade.py
# engine facade: wires config, store, catalog and remote clients for callers.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .. import config_base
from ..arr_client import client_for
from ..catalog import CatalogCache, CatalogFetcher, CatalogService
from ..errors import CatalogError, NotAuthorizedError, NotFoundError, SyncFailedError
from ..models import (
    BulkDeploymentResult,
    DeploymentPreview,
    DeploymentResult,
    Instance,
    RestoreResult,
    SyncResult,
    Template,
    TemplateDiffResult,
    UpdateCheckResult,
)
from ..store import JsonStore, Store
from ._deploy import DeploymentExecutor
from ._differ import diff as _diff, historical_diff as _historical_diff
from ._logging import Emitter
from ._metrics import SyncMetrics
from ._orchestrator import SyncOrchestrator
from ._types import ArrOps, CatalogOps, ClientFactory
from ._updates import UpdateDetector

__all__ = ["Engine"]


@dataclass
class Engine:
    config: Mapping[str, Any]
    store: Store | None = None
    catalog: CatalogOps | None = None
    client_factory: ClientFactory | None = None
    on_progress: Callable[[str], None] | None = None

    metrics: SyncMetrics = field(init=False, default_factory=SyncMetrics)
    emitter: Emitter = field(init=False)
    executor: DeploymentExecutor = field(init=False)
    detector: UpdateDetector = field(init=False)
    orchestrator: SyncOrchestrator = field(init=False)

    def __post_init__(self) -> None:
        cfg = self.config
        base = Path(config_base.CONFIG_BASE())
        if self.store is None:
            self.store = JsonStore(base / str((cfg.get("store") or {}).get("path") or "guidesync.json"))
        if self.catalog is None:
            self.catalog = CatalogService(CatalogFetcher.from_config(cfg), CatalogCache(base / "catalog"))
        if self.client_factory is None:
            self.client_factory = self._default_client

        self.emitter = Emitter(self.on_progress)
        dep = cfg.get("deploy") or {}
        self.executor = DeploymentExecutor(
            store=self.store,
            client_factory=self.client_factory,
            default_profile_name=str(dep.get("default_profile_name") or "TRaSH Guides HD/UHD"),
            backup_retention_days=int(dep.get("backup_retention_days") or 0),
            max_workers=int(dep.get("max_workers") or 4),
            reverse_quality_items=(cfg.get("catalog") or {}).get("quality_order") == "lowest_first",
            metrics=self.metrics,
            emitter=self.emitter,
        )
        self.detector = UpdateDetector(
            store=self.store,
            catalog=self.catalog,
            recent_window_hours=int((cfg.get("updates") or {}).get("recent_window_hours") or 24),
        )
        self.orchestrator = SyncOrchestrator(
            store=self.store,
            catalog=self.catalog,
            executor=self.executor,
            detector=self.detector,
            metrics=self.metrics,
            emitter=self.emitter,
        )

    def _default_client(self, instance: Instance) -> ArrOps:
        return client_for(instance, self.config)

    def _owned_template(self, template_id: str, user_id: str) -> Template:
        assert self.store is not None
        rec = self.store.get_template(template_id)
        if not rec or rec.get("deleted_at"):
            raise NotFoundError(f"template {template_id} not found")
        template = Template.from_record(rec)
        if template.user_id != user_id:
            raise NotAuthorizedError(f"template {template_id} is not owned by this user")
        return template

    # Public API
    def check_updates(self, user_id: str) -> UpdateCheckResult:
        return self.detector.check(user_id)

    def diff(self, template_id: str, user_id: str, target_version: str | None = None) -> TemplateDiffResult:
        assert self.catalog is not None
        template = self._owned_template(template_id, user_id)
        try:
            version = self.catalog.resolve_version(target_version)
            if template.version == version:
                return _historical_diff(template, version)
            snapshot = self.catalog.snapshot(template.service_type, version)
        except CatalogError as e:
            raise SyncFailedError(f"catalog unavailable: {e}") from e
        if snapshot.version != version:
            raise SyncFailedError(f"catalog snapshot is at {snapshot.version}, expected {version}")
        return _diff(template, snapshot)

    def sync(self, template_id: str, user_id: str, **opts: Any) -> SyncResult:
        return self.orchestrator.sync(template_id, user_id, **opts)

    def deploy(
        self,
        template_id: str,
        instance_id: str,
        user_id: str,
        conflict_resolutions: Mapping[str, str] | None = None,
    ) -> DeploymentResult:
        return self.executor.deploy_one(template_id, instance_id, user_id, conflict_resolutions)

    def deploy_many(
        self,
        template_id: str,
        instance_ids: Sequence[str],
        user_id: str,
        conflict_resolutions: Mapping[str, Mapping[str, str]] | None = None,
    ) -> BulkDeploymentResult:
        self._owned_template(template_id, user_id)
        return self.executor.deploy_many(template_id, instance_ids, user_id, conflict_resolutions)

    def preview(
        self,
        template_id: str,
        instance_id: str,
        user_id: str,
        conflict_resolutions: Mapping[str, str] | None = None,
    ) -> DeploymentPreview:
        return self.executor.preview(template_id, instance_id, user_id, conflict_resolutions)

    def restore_backup(self, backup_id: str, user_id: str) -> RestoreResult:
        return self.executor.restore_backup(backup_id, user_id)

    def process_auto_updates(self, user_id: str) -> dict[str, Any]:
        return self.orchestrator.process_auto_updates(user_id)

    def user_ids(self) -> Iterable[str]:
        assert self.store is not None
        return self.store.list_user_ids()
