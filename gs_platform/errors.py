# gs_platform/errors.py
# exception taxonomy shared by the engine, collaborators and API.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

__all__ = [
    "GuideSyncError",
    "NotFoundError",
    "NotAuthorizedError",
    "SyncFailedError",
    "DeploymentFailedError",
    "UnreachableError",
    "ValidationError",
    "CatalogError",
    "ArrApiError",
]


class GuideSyncError(Exception):
    code = "error"

    def __init__(self, message: str = "", *, code: str | None = None):
        super().__init__(message or self.code)
        if code:
            self.code = code

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.code


class NotFoundError(GuideSyncError):
    code = "not_found"


class NotAuthorizedError(GuideSyncError):
    code = "not_authorized"


class SyncFailedError(GuideSyncError):
    code = "sync_failed"


class DeploymentFailedError(GuideSyncError):
    code = "deployment_failed"

    def __init__(self, message: str = "", *, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class UnreachableError(GuideSyncError):
    code = "unreachable"


class ValidationError(GuideSyncError):
    code = "validation_failed"


class CatalogError(GuideSyncError):
    code = "catalog_error"


class ArrApiError(GuideSyncError):
    code = "arr_api_error"

    def __init__(self, message: str = "", *, status: int | None = None):
        super().__init__(message)
        self.status = status
