# GuideSync test scripts
from __future__ import annotations

import json

from gs_platform.engine import diff
from gs_platform.engine._differ import latest_entry_for
from gs_platform.models import CatalogSnapshot, Template

A = "a" * 32
B = "b" * 32
C = "c" * 32
D = "d" * 32


def _template(store, seed, **kw) -> Template:
    seed.template(
        store,
        [seed.rule(seed.cf(A, "Remux Tier 01", 50)), seed.rule(seed.cf(D, "Retired", 5))],
        groups=[{"trashId": "g1", "name": "Tiers", "enabled": True, "originalConfig": seed.group("g1", "Tiers", A)}],
        source_quality_profile_trash_id="qp1",
        **kw,
    )
    return Template.from_record(store.get_template("t1"))


def _snapshot(seed) -> CatalogSnapshot:
    return CatalogSnapshot(
        service="RADARR",
        version="v2",
        rules=[seed.cf(A, "Remux Tier 01", 75), seed.cf(B, "Remux Tier 02", 40), seed.cf(C, "Repack", 5)],
        groups=[seed.group("g1", "Tiers", A, B)],
        profiles=[{"trash_id": "qp1", "name": "HD Bluray + WEB", "formatItems": {"Repack": C, "Remux Tier 01": A}}],
    )


def test_unadopted_catalog_rules_only_appear_as_suggestions(store, seed) -> None:
    res = diff(_template(store, seed), _snapshot(seed))

    kinds = {d.trash_id: d.change_type for d in res.rule_diffs}
    assert kinds == {A: "unchanged", D: "removed"}
    assert "added" not in kinds.values()
    assert res.summary.added == 0
    assert res.summary.removed == 1
    assert res.summary.total_changes == 1

    sugg = {s.trash_id: s for s in res.suggested_additions}
    assert set(sugg) == {B, C}
    assert (sugg[B].source, sugg[B].source_name, sugg[B].recommended_score) == ("cf_group", "Tiers", 40)
    assert (sugg[C].source, sugg[C].source_name) == ("quality_profile", "HD Bluray + WEB")
    assert res.is_historical is False


def test_score_drift_is_suggested_only_without_override(store, seed) -> None:
    res = diff(_template(store, seed), _snapshot(seed))
    assert [(s.trash_id, s.current_score, s.recommended_score) for s in res.suggested_score_changes] == [(A, 50, 75)]
    a = next(d for d in res.rule_diffs if d.trash_id == A)
    assert (a.current_score, a.new_score) == (50, 75)


def test_disabled_group_offers_nothing(store, seed) -> None:
    seed.template(
        store,
        [seed.rule(seed.cf(A, "Remux Tier 01", 50))],
        groups=[{"trashId": "g1", "name": "Tiers", "enabled": False, "originalConfig": seed.group("g1", "Tiers", A)}],
    )
    res = diff(Template.from_record(store.get_template("t1")), _snapshot(seed))
    assert res.suggested_additions == []


def test_same_version_returns_historical_view(store, seed) -> None:
    entry = {
        "changeType": "auto_sync",
        "timestamp": "2026-01-02T00:00:00+00:00",
        "fromCommitHash": "v1",
        "toCommitHash": "v2",
        "customFormatsAdded": [{"trashId": B, "name": "Remux Tier 02", "score": 40}],
        "customFormatsRemoved": [],
        "customFormatsUpdated": [{"trashId": A, "name": "Remux Tier 01"}],
        "scoreChanges": [{"trashId": A, "name": "Remux Tier 01", "oldScore": 50, "newScore": 75}],
        "summaryStats": {"customFormatsAdded": 1, "customFormatsRemoved": 0, "customFormatsUpdated": 1, "customFormatsPreserved": 3},
    }
    older = dict(entry, timestamp="2026-01-01T00:00:00+00:00", changeType="manual_sync", customFormatsAdded=[])
    t = _template(
        store,
        seed,
        version="v2",
        change_log=json.dumps([older, entry, {"broken": True}]),
        quality_profile={"name": "HD Bluray + WEB", "trash_score_set": "sqp-1-1080p"},
    )
    res = diff(t, _snapshot(seed))

    assert res.is_historical is True
    assert res.historical_sync_timestamp == "2026-01-02T00:00:00+00:00"
    assert res.current_version == "v1"
    assert (res.summary.added, res.summary.modified, res.summary.unchanged, res.summary.total_changes) == (1, 1, 3, 2)
    assert [d.change_type for d in res.rule_diffs] == ["added", "modified"]
    (sc,) = res.suggested_score_changes
    assert (sc.current_score, sc.recommended_score) == (50, 75)
    assert sc.score_set == "sqp-1-1080p"


def test_historical_view_without_log_entry_is_empty(store, seed) -> None:
    t = _template(store, seed, version="v2")
    res = diff(t, _snapshot(seed))
    assert res.is_historical is True
    assert res.rule_diffs == []
    assert res.summary.total_changes == 0


def test_latest_entry_skips_malformed_entries() -> None:
    good = {
        "timestamp": "2026-01-01T00:00:00Z",
        "toCommitHash": "v9",
        "customFormatsAdded": [],
        "customFormatsRemoved": [],
        "customFormatsUpdated": [],
        "scoreChanges": [],
        "summaryStats": {},
    }
    bad = dict(good, timestamp="2026-02-01T00:00:00Z", scoreChanges=None)
    assert latest_entry_for([good, bad, "junk"], "v9") is good
    assert latest_entry_for([good], "other") is None


def test_historical_view_skips_mistyped_log_rows(store, seed) -> None:
    entry = {
        "timestamp": "2026-01-02T00:00:00+00:00",
        "fromCommitHash": "v1",
        "toCommitHash": "v2",
        "customFormatsAdded": ["oops", {"trashId": B, "name": "Remux Tier 02", "score": "n/a"}],
        "customFormatsRemoved": [None],
        "customFormatsUpdated": [42],
        "scoreChanges": ["oops", {"trashId": A, "name": "Remux Tier 01", "oldScore": "x", "newScore": 75}],
        "summaryStats": {"customFormatsAdded": "one"},
    }
    t = _template(store, seed, version="v2", change_log=json.dumps([entry]))

    res = diff(t, _snapshot(seed))

    assert [(d.trash_id, d.change_type, d.new_score) for d in res.rule_diffs] == [(B, "added", None)]
    assert [(s.current_score, s.recommended_score) for s in res.suggested_score_changes] == [(0, 75)]
    assert res.summary.added == 0
