# /api/templatesAPI.py
# GuideSync - template update, diff, sync and deployment endpoints
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel

from gs_platform._logging import log as _root_log
from gs_platform.engine import Engine
from gs_platform.errors import GuideSyncError

log = _root_log.child("api")

_STATUS_BY_CODE = {
    "not_found": 404,
    "not_authorized": 403,
    "validation_failed": 422,
    "sync_failed": 409,
    "unreachable": 502,
    "deployment_failed": 502,
    "catalog_error": 502,
    "arr_api_error": 502,
}


class SyncBody(BaseModel):
    target_version: str | None = None
    apply_score_updates: bool | None = None
    delete_removed: bool | None = None
    approved_additions: list[str] = []
    deploy: bool = True


class DeployBody(BaseModel):
    instance_id: str
    conflict_resolutions: dict[str, str] | None = None


class BulkDeployBody(BaseModel):
    instance_ids: list[str]
    conflict_resolutions: dict[str, dict[str, str]] | None = None


class PreviewBody(BaseModel):
    instance_id: str
    conflict_resolutions: dict[str, str] | None = None


def _http_error(e: GuideSyncError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_CODE.get(e.code, 500), detail={"code": e.code, "error": e.message})


def _user(x_user_id: str | None) -> str:
    uid = (x_user_id or "").strip()
    if not uid:
        raise HTTPException(status_code=401, detail={"code": "not_authorized", "error": "X-User-Id header required"})
    return uid


def build_router(engine: Engine) -> APIRouter:
    router = APIRouter(prefix="/api/templates", tags=["templates"])

    @router.get("/updates")
    def api_updates(x_user_id: str | None = Header(None)) -> dict[str, Any]:
        try:
            return engine.check_updates(_user(x_user_id)).to_dict()
        except GuideSyncError as e:
            raise _http_error(e)

    @router.get("/metrics")
    def api_metrics() -> dict[str, Any]:
        return engine.metrics.overview()

    @router.post("/auto-sync")
    def api_auto_sync(x_user_id: str | None = Header(None)) -> dict[str, Any]:
        try:
            out = engine.process_auto_updates(_user(x_user_id))
        except GuideSyncError as e:
            raise _http_error(e)
        out["results"] = [r.to_dict() for r in out["results"]]
        return out

    @router.post("/backups/{backup_id}/restore")
    def api_restore_backup(backup_id: str, x_user_id: str | None = Header(None)) -> dict[str, Any]:
        try:
            return engine.restore_backup(backup_id, _user(x_user_id)).to_dict()
        except GuideSyncError as e:
            log.warn(f"restore of backup {backup_id}: {e}")
            raise _http_error(e)

    @router.get("/{template_id}/diff")
    def api_diff(template_id: str, version: str | None = None, x_user_id: str | None = Header(None)) -> dict[str, Any]:
        try:
            return engine.diff(template_id, _user(x_user_id), version).to_dict()
        except GuideSyncError as e:
            raise _http_error(e)

    @router.post("/{template_id}/sync")
    def api_sync(template_id: str, body: SyncBody | None = None, x_user_id: str | None = Header(None)) -> dict[str, Any]:
        b = body or SyncBody()
        res = engine.sync(
            template_id,
            _user(x_user_id),
            target_version=b.target_version,
            apply_score_updates=b.apply_score_updates,
            delete_removed=b.delete_removed,
            approved_additions=b.approved_additions,
            deploy=b.deploy,
        )
        if not res.success and res.error_code in ("not_found", "not_authorized"):
            raise HTTPException(
                status_code=_STATUS_BY_CODE[res.error_code],
                detail={"code": res.error_code, "error": "; ".join(res.errors)},
            )
        return res.to_dict()

    @router.post("/{template_id}/deploy")
    def api_deploy(template_id: str, body: DeployBody, x_user_id: str | None = Header(None)) -> dict[str, Any]:
        try:
            return engine.deploy(template_id, body.instance_id, _user(x_user_id), body.conflict_resolutions).to_dict()
        except GuideSyncError as e:
            log.warn(f"deploy {template_id} -> {body.instance_id}: {e}")
            raise _http_error(e)

    @router.post("/{template_id}/deploy/preview")
    def api_deploy_preview(template_id: str, body: PreviewBody, x_user_id: str | None = Header(None)) -> dict[str, Any]:
        try:
            return engine.preview(template_id, body.instance_id, _user(x_user_id), body.conflict_resolutions).to_dict()
        except GuideSyncError as e:
            raise _http_error(e)

    @router.post("/{template_id}/deploy/bulk")
    def api_deploy_bulk(template_id: str, body: BulkDeployBody, x_user_id: str | None = Header(None)) -> dict[str, Any]:
        try:
            return engine.deploy_many(template_id, body.instance_ids, _user(x_user_id), body.conflict_resolutions).to_dict()
        except GuideSyncError as e:
            raise _http_error(e)

    return router
