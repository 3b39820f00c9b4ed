# GuideSync test scripts
from __future__ import annotations

import json

import pytest

from gs_platform.engine import Engine
from gs_platform.errors import NotAuthorizedError, NotFoundError, SyncFailedError
from gs_platform.models import CatalogSnapshot, Template

A = "a" * 32
B = "b" * 32
C = "c" * 32

CFG = {"deploy": {"max_workers": 2, "backup_retention_days": 7}, "updates": {"recent_window_hours": 24}}


def _engine(store, catalog, arr, events: list | None = None) -> Engine:
    return Engine(
        CFG,
        store=store,
        catalog=catalog,
        client_factory=lambda inst: arr,
        on_progress=(events.append if events is not None else None),
    )


def _seed_catalog(catalog, seed) -> None:
    catalog.add(
        CatalogSnapshot(
            service="RADARR",
            version="v2",
            rules=[seed.cf(A, "Tier 01", 75), seed.cf(B, "Tier 02", 40), seed.cf(C, "Unrelated", 1)],
            groups=[seed.group("g1", "Tiers", A, B)],
        )
    )


def _seed_template(store, seed, **kw) -> None:
    seed.template(
        store,
        [seed.rule(seed.cf(A, "Tier 01", 50))],
        groups=[{"trashId": "g1", "name": "Tiers", "enabled": True, "originalConfig": seed.group("g1", "Tiers", A)}],
        **kw,
    )


def test_missing_and_foreign_templates_fail_without_side_effects(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    _seed_template(store, seed)
    eng = _engine(store, catalog, arr)
    before = store.get_template("t1")

    missing = eng.sync("nope", "u1")
    foreign = eng.sync("t1", "intruder")

    assert (missing.success, missing.error_code) == (False, "not_found")
    assert (foreign.success, foreign.error_code) == (False, "not_authorized")
    assert store.get_template("t1") == before


def test_snapshot_version_mismatch_is_a_hard_failure(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    catalog.tag_override[("RADARR", "v2")] = "v1-stale"
    _seed_template(store, seed)

    res = _engine(store, catalog, arr).sync("t1", "u1")

    assert res.error_code == "sync_failed"
    assert "expected v2" in res.errors[0]
    assert store.get_template("t1")["version"] == "v1"


def test_catalog_outage_and_unknown_version_fail_sync(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    _seed_template(store, seed)
    eng = _engine(store, catalog, arr)

    assert eng.sync("t1", "u1", target_version="deadbeef").error_code == "sync_failed"
    catalog.fail = True
    assert eng.sync("t1", "u1").error_code == "sync_failed"
    assert store.get_template("t1")["version"] == "v1"


def test_sync_persists_merge_and_appends_change_log(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    _seed_template(store, seed)
    events: list[str] = []

    res = _engine(store, catalog, arr, events).sync("t1", "u1", apply_score_updates=True)

    assert res.success is True
    assert (res.previous_version, res.new_version) == ("v1", "v2")
    assert res.merge_stats.scores_updated == 1

    t = Template.from_record(store.get_template("t1"))
    assert t.version == "v2"
    assert t.last_synced_at
    assert t.config.rule_ids() == {A}
    (entry,) = t.change_log
    assert entry["changeType"] == "manual_sync"
    assert (entry["fromCommitHash"], entry["toCommitHash"]) == ("v1", "v2")
    assert entry["scoreChanges"] == [{"trashId": A, "name": "Tier 01", "oldScore": 50, "newScore": 75}]
    assert entry["summaryStats"]["scoresUpdated"] == 1

    kinds = [json.loads(e)["event"] for e in events]
    assert kinds[0] == "sync:start" and kinds[-1] == "sync:done"


def test_approved_group_additions_are_adopted(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    _seed_template(store, seed)

    res = _engine(store, catalog, arr).sync("t1", "u1", approved_additions=[B, "f" * 32])

    t = Template.from_record(store.get_template("t1"))
    assert [r.trash_id for r in t.config.custom_formats] == [A, B]
    assert C not in t.config.rule_ids()
    assert res.merge_stats.custom_formats_added == 1
    assert any("f" * 32 in w for w in res.warnings)


def test_deploy_failures_after_sync_are_reported_not_rolled_back(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    _seed_template(store, seed)
    seed.instance(store)
    store.upsert_mapping("t1", "i1", {"sync_strategy": "auto"})
    arr.unreachable = True

    res = _engine(store, catalog, arr).sync("t1", "u1")

    assert res.success is True
    assert res.errors and "i1" in res.errors[0]
    assert store.get_template("t1")["version"] == "v2"


def test_sync_deploys_to_auto_mappings_only(config_base, store, catalog, arr, seed, make_arr) -> None:
    _seed_catalog(catalog, seed)
    _seed_template(store, seed)
    seed.instance(store, "i1")
    seed.instance(store, "i2")
    store.upsert_mapping("t1", "i1", {"sync_strategy": "auto"})
    store.upsert_mapping("t1", "i2", {"sync_strategy": "manual"})
    other = make_arr()
    clients = {"i1": arr, "i2": other}
    eng = Engine(CFG, store=store, catalog=catalog, client_factory=lambda inst: clients[inst.id])

    res = eng.sync("t1", "u1")

    assert [d.instance_id for d in res.deployments] == ["i1"]
    assert res.deployments[0].success is True
    assert other.calls == []


def test_process_auto_updates_syncs_eligible_and_flags_the_rest(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    seed.template(store, [seed.rule(seed.cf(A, "Tier 01", 50))], template_id="eligible")
    _seed_template(store, seed, template_id="needs-approval")
    seed.instance(store)
    for tid in ("eligible", "needs-approval"):
        store.upsert_mapping(tid, "i1", {"sync_strategy": "auto"})

    out = _engine(store, catalog, arr).process_auto_updates("u1")

    assert out["latest_version"] == "v2"
    assert (out["processed"], out["synced"], out["failed"]) == (1, 1, 0)
    assert out["needs_attention"] == ["needs-approval"]
    synced = Template.from_record(store.get_template("eligible"))
    assert synced.change_log[-1]["changeType"] == "auto_sync"
    assert store.get_template("needs-approval")["version"] == "v1"


def test_engine_diff_and_bulk_deploy_check_ownership(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    _seed_template(store, seed)
    eng = _engine(store, catalog, arr)

    assert eng.diff("t1", "u1").latest_version == "v2"
    with pytest.raises(NotAuthorizedError):
        eng.diff("t1", "u2")
    with pytest.raises(NotFoundError):
        eng.deploy_many("missing", ["i1"], "u1")
    assert eng.metrics.overview() == {}
    eng.sync("t1", "u1")
    assert eng.metrics.overview()["sync"]["total"] == 1


def test_unexpected_deploy_crash_is_reported_after_persisting(config_base, store, catalog, arr, seed, monkeypatch) -> None:
    _seed_catalog(catalog, seed)
    seed.template(store, [seed.rule(seed.cf(A, "Tier 01", 50))])
    seed.instance(store)
    store.upsert_mapping("t1", "i1", {"sync_strategy": "auto"})

    def _schema_down() -> dict:
        raise RuntimeError("schema endpoint exploded")

    monkeypatch.setattr(arr, "quality_profile_schema", _schema_down)
    eng = _engine(store, catalog, arr)

    out = eng.process_auto_updates("u1")

    assert (out["synced"], out["failed"]) == (1, 0)
    (res,) = out["results"]
    assert res.success is True
    assert any("schema endpoint exploded" in e for e in res.errors)
    assert store.get_template("t1")["version"] == "v2"
    (dep,) = store._doc["deployments"].values()
    assert dep["status"] == "FAILED"
    assert eng.metrics.overview()["deploy"]["failures"] == 1


def test_template_failing_validation_is_not_persisted(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    hand_made = {"trashId": "e" * 32, "name": "Mine", "originalConfig": {}, "conditionsEnabled": {}, "origin": "user_added"}
    seed.template(store, [seed.rule(seed.cf(A, "Tier 01", 50)), hand_made])
    before = store.get_template("t1")

    res = _engine(store, catalog, arr).sync("t1", "u1")

    assert (res.success, res.error_code) == (False, "sync_failed")
    assert any("originalConfig" in e for e in res.errors)
    after = store.get_template("t1")
    assert (after["config"], after["version"], after["change_log"]) == (
        before["config"],
        before["version"],
        before["change_log"],
    )


def test_engine_diff_refuses_unverifiable_catalog(config_base, store, catalog, arr, seed) -> None:
    _seed_catalog(catalog, seed)
    _seed_template(store, seed)
    eng = _engine(store, catalog, arr)

    catalog.tag_override[("RADARR", "v2")] = "v1-stale"
    with pytest.raises(SyncFailedError):
        eng.diff("t1", "u1")
    catalog.fail = True
    with pytest.raises(SyncFailedError):
        eng.diff("t1", "u1")


def test_quality_order_flag_reverses_only_lowest_first_catalogs(config_base, store, catalog, arr) -> None:
    def _reverses(order: str | None) -> bool:
        cfg = {"catalog": {"quality_order": order}} if order else {}
        return Engine(cfg, store=store, catalog=catalog, client_factory=lambda inst: arr).executor.reverse_quality_items

    assert _reverses(None) is False
    assert _reverses("highest_first") is False
    assert _reverses("lowest_first") is True
