# gs_platform/catalog.py
# upstream catalog access: GitHub fetcher, versioned local cache and snapshots.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

from ._http import build_session, error_message, request_with_retries, safe_json
from ._logging import log as _root_log
from .config_base import _write_json_atomic
from .errors import CatalogError
from .models import SERVICE_KINDS, CatalogSnapshot
from .store import utc_now_iso

log = _root_log.child("catalog")

__all__ = ["CatalogFetcher", "CatalogCache", "CatalogService", "CONFIG_KINDS"]

CUSTOM_FORMATS = "CUSTOM_FORMATS"
CF_GROUPS = "CF_GROUPS"
QUALITY_PROFILES = "QUALITY_PROFILES"
CONFIG_KINDS = (CUSTOM_FORMATS, CF_GROUPS, QUALITY_PROFILES)

_KIND_DIRS = {
    CUSTOM_FORMATS: "cf",
    CF_GROUPS: "cf-groups",
    QUALITY_PROFILES: "quality-profiles",
}


def _check_service(service: str) -> str:
    s = str(service or "").upper()
    if s not in SERVICE_KINDS:
        raise CatalogError(f"unsupported service kind: {service!r}")
    return s


@dataclass
class CatalogFetcher:
    repo: str = "TRaSH-Guides/Guides"
    branch: str = "master"
    api_url: str = "https://api.github.com"
    raw_url: str = "https://raw.githubusercontent.com"
    timeout: float = 15.0
    max_retries: int = 3
    session: requests.Session = field(default_factory=build_session)

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], session: requests.Session | None = None) -> "CatalogFetcher":
        c = cfg.get("catalog") or {}
        return cls(
            repo=str(c.get("repo") or cls.repo),
            branch=str(c.get("branch") or cls.branch),
            api_url=str(c.get("api_url") or cls.api_url).rstrip("/"),
            raw_url=str(c.get("raw_url") or cls.raw_url).rstrip("/"),
            timeout=float(c.get("timeout") or cls.timeout),
            max_retries=int(c.get("max_retries") or cls.max_retries),
            session=session or build_session(),
        )

    def _get(self, url: str, **kwargs: Any) -> requests.Response:
        try:
            r = request_with_retries(self.session, "GET", url, timeout=self.timeout, max_retries=self.max_retries, **kwargs)
        except requests.RequestException as e:
            raise CatalogError(f"catalog request failed: {url}: {e}") from e
        return r

    def latest_version(self) -> str:
        url = f"{self.api_url}/repos/{self.repo}/commits/{self.branch}"
        r = self._get(url)
        if not r.ok:
            raise CatalogError(f"cannot resolve latest catalog version: {error_message(r)}")
        sha = (safe_json(r) or {}).get("sha")
        if not sha:
            raise CatalogError("catalog commit response carried no sha")
        return str(sha)

    def has_version(self, version: str) -> bool:
        r = self._get(f"{self.api_url}/repos/{self.repo}/commits/{version}")
        if r.status_code in (404, 422):
            return False
        if not r.ok:
            raise CatalogError(f"cannot verify catalog version {version}: {error_message(r)}")
        return True

    def _dir_path(self, service: str, kind: str) -> str:
        return f"docs/json/{service.lower()}/{_KIND_DIRS[kind]}"

    def fetch(self, service: str, kind: str, version: str) -> list[dict[str, Any]]:
        service = _check_service(service)
        if kind not in _KIND_DIRS:
            raise CatalogError(f"unknown catalog kind: {kind}")
        path = self._dir_path(service, kind)
        r = self._get(f"{self.api_url}/repos/{self.repo}/contents/{path}", params={"ref": version})
        if not r.ok:
            raise CatalogError(f"cannot list {path}@{version}: {error_message(r)}")
        listing = safe_json(r)
        if not isinstance(listing, list):
            raise CatalogError(f"unexpected listing for {path}@{version}")

        out: list[dict[str, Any]] = []
        for entry in listing:
            name = str(entry.get("name") or "")
            if entry.get("type") != "file" or not name.endswith(".json"):
                continue
            url = f"{self.raw_url}/{self.repo}/{version}/{path}/{name}"
            fr = self._get(url)
            if not fr.ok:
                raise CatalogError(f"cannot download {path}/{name}@{version}: {error_message(fr)}")
            body = safe_json(fr)
            if isinstance(body, dict) and body:
                out.append(body)
            else:
                log.warn(f"skipping unreadable catalog file {path}/{name}")
        log.debug(f"fetched {len(out)} {kind} for {service} @ {version[:7]}")
        return out


@dataclass
class CatalogCache:
    base_path: Path

    def _file(self, service: str, kind: str) -> Path:
        return Path(self.base_path) / f"{service.lower()}_{kind.lower()}.json"

    def _read(self, service: str, kind: str) -> dict[str, Any]:
        p = self._file(service, kind)
        if not p.exists():
            return {}
        try:
            data = json.loads(p.read_text("utf-8"))
        except (OSError, ValueError) as e:
            log.warn(f"unreadable catalog cache {p.name}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def version(self, service: str, kind: str) -> str | None:
        return self._read(service, kind).get("version") or None

    def get(self, service: str, kind: str) -> list[dict[str, Any]] | None:
        data = self._read(service, kind).get("data")
        return data if isinstance(data, list) else None

    def set(self, service: str, kind: str, data: list[dict[str, Any]], version: str) -> None:
        _write_json_atomic(
            self._file(service, kind),
            {"version": version, "fetched_at": utc_now_iso(), "data": list(data)},
        )


@dataclass
class CatalogService:
    fetcher: CatalogFetcher
    cache: CatalogCache

    def latest_version(self) -> str:
        return self.fetcher.latest_version()

    def resolve_version(self, requested: str | None = None) -> str:
        if not requested:
            return self.latest_version()
        if not self.fetcher.has_version(requested):
            raise CatalogError(f"unknown catalog version: {requested}")
        return requested

    def snapshot(self, service: str, version: str) -> CatalogSnapshot:
        service = _check_service(service)
        for kind in CONFIG_KINDS:
            if self.cache.version(service, kind) == version:
                continue
            log.info(f"refreshing {service} {kind} cache to {version[:7]}")
            self.cache.set(service, kind, self.fetcher.fetch(service, kind, version), version)

        stale = [k for k in CONFIG_KINDS if self.cache.version(service, k) != version]
        if stale:
            raise CatalogError(f"catalog cache for {service} is not at version {version}: {', '.join(stale)}")

        return CatalogSnapshot(
            service=service,
            version=version,
            rules=self.cache.get(service, CUSTOM_FORMATS) or [],
            groups=self.cache.get(service, CF_GROUPS) or [],
            profiles=self.cache.get(service, QUALITY_PROFILES) or [],
        )
