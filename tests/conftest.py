# GuideSync test scripts
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from gs_platform.errors import ArrApiError, CatalogError, UnreachableError  # noqa: E402
from gs_platform.models import CatalogSnapshot  # noqa: E402
from gs_platform.store import JsonStore  # noqa: E402


@pytest.fixture()
def config_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
    return tmp_path


@pytest.fixture()
def store(tmp_path: Path) -> JsonStore:
    return JsonStore(tmp_path / "store.json")


SCHEMA_ITEMS: list[dict[str, Any]] = [
    {"quality": {"id": 1, "name": "SDTV", "source": "television", "resolution": 480}, "items": [], "allowed": False},
    {"quality": {"id": 3, "name": "WEBDL-1080p", "source": "web", "resolution": 1080}, "items": [], "allowed": False},
    {"quality": {"id": 15, "name": "WEBRip-1080p", "source": "webRip", "resolution": 1080}, "items": [], "allowed": False},
    {"quality": {"id": 7, "name": "Bluray-1080p", "source": "bluray", "resolution": 1080}, "items": [], "allowed": False},
    {"quality": {"id": 19, "name": "Bluray-2160p", "source": "bluray", "resolution": 2160}, "items": [], "allowed": False},
]


class FakeArr:
    """In-memory *arr instance recording every write."""

    def __init__(self) -> None:
        self.cfs: list[dict[str, Any]] = []
        self.profiles: list[dict[str, Any]] = []
        self.schema: dict[str, Any] = {
            "id": 0,
            "name": "",
            "upgradeAllowed": False,
            "cutoff": 0,
            "items": [dict(i) for i in SCHEMA_ITEMS],
            "formatItems": [],
            "minFormatScore": 0,
            "cutoffFormatScore": 0,
            "minUpgradeFormatScore": 0,
            "language": {"id": 1, "name": "English"},
        }
        self.healthy = True
        self.unreachable = False
        self.fail_names: set[str] = set()
        self.fail_profile = False
        self.calls: list[tuple[str, Any]] = []
        self._next = 100

    def _id(self) -> int:
        self._next += 1
        return self._next

    def health_check(self) -> bool:
        return self.healthy

    def list_custom_formats(self) -> list[dict[str, Any]]:
        if self.unreachable:
            raise UnreachableError("connection refused")
        return [dict(c) for c in self.cfs]

    def create_custom_format(self, cf: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_cf", cf["name"]))
        if cf["name"] in self.fail_names:
            raise ArrApiError("HTTP 400: Must be unique", status=400)
        row = dict(cf, id=self._id())
        self.cfs.append(row)
        return row

    def update_custom_format(self, cf_id: int, cf: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update_cf", cf["name"]))
        if cf["name"] in self.fail_names:
            raise ArrApiError("HTTP 400: invalid", status=400)
        for i, row in enumerate(self.cfs):
            if row["id"] == cf_id:
                self.cfs[i] = dict(cf, id=cf_id)
                return self.cfs[i]
        raise ArrApiError("HTTP 404: not found", status=404)

    def delete_custom_format(self, cf_id: int) -> None:
        self.calls.append(("delete_cf", cf_id))
        raise AssertionError("custom formats must never be deleted")

    def list_quality_profiles(self) -> list[dict[str, Any]]:
        return [dict(p) for p in self.profiles]

    def quality_profile_schema(self) -> dict[str, Any]:
        return dict(self.schema)

    def create_quality_profile(self, profile: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_profile", profile["name"]))
        if self.fail_profile:
            raise ArrApiError("HTTP 400: bad profile", status=400)
        row = dict(profile, id=self._id())
        self.profiles.append(row)
        return row

    def update_quality_profile(self, profile_id: int, profile: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("update_profile", profile_id))
        if self.fail_profile:
            raise ArrApiError("HTTP 400: bad profile", status=400)
        for i, row in enumerate(self.profiles):
            if row["id"] == profile_id:
                self.profiles[i] = dict(profile, id=profile_id)
                return self.profiles[i]
        raise ArrApiError("HTTP 404: not found", status=404)

    def score_of(self, profile_name: str, cf_name: str) -> int | None:
        cf_id = next((c["id"] for c in self.cfs if c["name"] == cf_name), None)
        prof = next((p for p in self.profiles if p["name"] == profile_name), None)
        if cf_id is None or prof is None:
            return None
        return next((f["score"] for f in prof.get("formatItems") or [] if f.get("format") == cf_id), None)


class FakeCatalog:
    def __init__(self, latest: str = "v2") -> None:
        self.latest = latest
        self.snapshots: dict[tuple[str, str], CatalogSnapshot] = {}
        self.tag_override: dict[tuple[str, str], str] = {}
        self.fail = False

    def add(self, snap: CatalogSnapshot) -> None:
        self.snapshots[(snap.service, snap.version)] = snap

    def latest_version(self) -> str:
        if self.fail:
            raise CatalogError("github unavailable")
        return self.latest

    def resolve_version(self, requested: str | None = None) -> str:
        if not requested:
            return self.latest_version()
        if requested not in {v for _, v in self.snapshots} and requested != self.latest:
            raise CatalogError(f"unknown catalog version: {requested}")
        return requested

    def snapshot(self, service: str, version: str) -> CatalogSnapshot:
        if self.fail:
            raise CatalogError("github unavailable")
        snap = self.snapshots.get((service, version))
        if snap is None:
            raise CatalogError(f"no snapshot for {service}@{version}")
        tag = self.tag_override.get((service, version))
        if tag:
            return CatalogSnapshot(service, tag, snap.rules, snap.groups, snap.profiles)
        return snap


@pytest.fixture()
def arr() -> FakeArr:
    return FakeArr()


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog()


class Seed:
    """Builders for catalog entries and stored records."""

    @staticmethod
    def cf(trash_id: str, name: str, score: int | None = None, *specs: str, **scores: int) -> dict[str, Any]:
        ts: dict[str, int] = dict(scores)
        if score is not None:
            ts["default"] = score
        return {
            "trash_id": trash_id,
            "name": name,
            "trash_scores": ts,
            "includeCustomFormatWhenRenaming": False,
            "specifications": [
                {"name": s, "implementation": "ReleaseTitleSpecification", "negate": False, "required": True,
                 "fields": {"value": f"\\b{s}\\b"}}
                for s in (specs or ("Title",))
            ],
        }

    @staticmethod
    def group(trash_id: str, name: str, *members: str, default: bool = False) -> dict[str, Any]:
        return {
            "trash_id": trash_id,
            "name": name,
            "default": "true" if default else "false",
            "custom_formats": [{"trash_id": m, "name": m} for m in members],
        }

    @staticmethod
    def rule(cat: dict[str, Any], *, score_override: int | None = None, origin: str = "trash_sync", **enabled: bool) -> dict[str, Any]:
        out: dict[str, Any] = {
            "trashId": cat["trash_id"],
            "name": cat["name"],
            "originalConfig": cat,
            "conditionsEnabled": {s["name"]: enabled.get(s["name"], True) for s in cat["specifications"]},
            "origin": origin,
        }
        if score_override is not None:
            out["scoreOverride"] = score_override
        return out

    @staticmethod
    def template(
        store: JsonStore,
        rules: list[dict[str, Any]],
        *,
        template_id: str = "t1",
        user_id: str = "u1",
        version: str | None = "v1",
        groups: list[dict[str, Any]] | None = None,
        quality_profile: dict[str, Any] | None = None,
        **extra: Any,
    ) -> str:
        cfg: dict[str, Any] = {
            "customFormats": rules,
            "customFormatGroups": groups or [],
            "qualityProfile": quality_profile or {"name": "HD Bluray + WEB", "cutoff": "Bluray-1080p"},
        }
        cfg.update(extra.pop("config_extra", {}))
        rec: dict[str, Any] = {
            "id": template_id,
            "user_id": user_id,
            "name": "HD Bluray + WEB",
            "service_type": "RADARR",
            "config": json.dumps(cfg),
            "version": version,
            "has_user_modifications": False,
            "change_log": "[]",
            "instance_overrides": "{}",
        }
        rec.update(extra)
        store.put_template(rec)
        return template_id

    @staticmethod
    def instance(store: JsonStore, instance_id: str = "i1", *, user_id: str = "u1", service: str = "RADARR") -> str:
        store.put_instance(
            {
                "id": instance_id,
                "user_id": user_id,
                "label": f"radarr-{instance_id}",
                "service": service,
                "base_url": f"http://{instance_id}.local:7878",
                "api_key": "k",
            }
        )
        return instance_id


@pytest.fixture()
def seed() -> type[Seed]:
    return Seed


@pytest.fixture()
def make_arr() -> type[FakeArr]:
    return FakeArr
