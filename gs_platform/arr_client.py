# gs_platform/arr_client.py
# Radarr/Sonarr v3 configuration API client.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import requests

from ._http import build_session, error_message, request_with_retries, safe_json
from ._logging import log as _root_log
from .errors import ArrApiError, UnreachableError
from .models import Instance

log = _root_log.child("arr")

__all__ = ["ArrClient", "client_for"]


class ArrClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        service: str = "RADARR",
        timeout: float = 15.0,
        max_retries: int = 3,
        verify_ssl: bool = True,
        session: requests.Session | None = None,
    ):
        self.base_url = str(base_url or "").rstrip("/")
        self.service = service
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or build_session(verify=verify_ssl)
        self.session.headers.update({"X-Api-Key": api_key, "Content-Type": "application/json"})

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/api/v3/{endpoint.lstrip('/')}"

    def _request(self, method: str, endpoint: str, body: Any = None) -> Any:
        url = self._url(endpoint)
        kwargs: dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body
        try:
            r = request_with_retries(
                self.session, method, url, timeout=self.timeout, max_retries=self.max_retries, **kwargs
            )
        except requests.RequestException as e:
            raise UnreachableError(f"{self.base_url} unreachable: {e}") from e
        if not r.ok:
            raise ArrApiError(error_message(r), status=r.status_code)
        return safe_json(r)

    # System
    def system_status(self) -> dict[str, Any]:
        return self._request("GET", "system/status")

    def health_check(self) -> bool:
        try:
            self.system_status()
        except (UnreachableError, ArrApiError) as e:
            log.warn(f"health check failed for {self.base_url}: {e}")
            return False
        return True

    # Custom formats
    def list_custom_formats(self) -> list[dict[str, Any]]:
        data = self._request("GET", "customformat")
        return data if isinstance(data, list) else []

    def create_custom_format(self, cf: Mapping[str, Any]) -> dict[str, Any]:
        body = {k: v for k, v in cf.items() if k != "id"}
        return self._request("POST", "customformat", body)

    def update_custom_format(self, cf_id: int, cf: Mapping[str, Any]) -> dict[str, Any]:
        body = dict(cf)
        body["id"] = cf_id
        return self._request("PUT", f"customformat/{cf_id}", body)

    # Quality profiles
    def list_quality_profiles(self) -> list[dict[str, Any]]:
        data = self._request("GET", "qualityprofile")
        return data if isinstance(data, list) else []

    def create_quality_profile(self, profile: Mapping[str, Any]) -> dict[str, Any]:
        body = {k: v for k, v in profile.items() if k != "id"}
        return self._request("POST", "qualityprofile", body)

    def update_quality_profile(self, profile_id: int, profile: Mapping[str, Any]) -> dict[str, Any]:
        body = dict(profile)
        body["id"] = profile_id
        return self._request("PUT", f"qualityprofile/{profile_id}", body)

    def quality_profile_schema(self) -> dict[str, Any]:
        return self._request("GET", "qualityprofile/schema")


def client_for(instance: Instance, cfg: Mapping[str, Any] | None = None) -> ArrClient:
    a = (cfg or {}).get("arr") or {}
    return ArrClient(
        instance.base_url,
        instance.api_key,
        service=instance.service,
        timeout=float(a.get("timeout") or 15.0),
        max_retries=int(a.get("max_retries") or 3),
        verify_ssl=bool(a.get("verify_ssl", True)),
    )
