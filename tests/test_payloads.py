# GuideSync test scripts
from __future__ import annotations

from gs_platform.engine._payloads import (
    FieldMap,
    FieldPairs,
    QualityGroup,
    QualityIndividual,
    dump_items,
    extract_trash_id,
    fallback_cutoff,
    find_cutoff,
    parse_fields,
    parse_items,
    rule_to_remote,
    schema_index,
    to_map,
    to_pairs,
)
from gs_platform.models import TemplateRule

TID = "496f355514737f7d83bf7aa4d24f8169"


def test_fields_accept_both_shapes() -> None:
    as_map = parse_fields({"value": "x265", "exceptLanguage": False})
    as_pairs = parse_fields([{"name": "value", "value": "x265"}, {"name": "exceptLanguage", "value": False}])
    assert isinstance(as_map, FieldMap)
    assert isinstance(as_pairs, FieldPairs)
    assert to_map(as_map) == to_map(as_pairs)
    assert to_pairs(as_map) == [{"name": "value", "value": "x265"}, {"name": "exceptLanguage", "value": False}]
    assert to_map(parse_fields(None)) == {}


def test_rule_payload_drops_disabled_conditions(seed) -> None:
    cat = seed.cf(TID, "TrueHD ATMOS", 5000, "TrueHD", "ATMOS")
    cat["includeCustomFormatWhenRenaming"] = True
    rule = TemplateRule(
        trash_id=TID,
        name="TrueHD ATMOS",
        original_config=cat,
        conditions_enabled={"TrueHD": True, "ATMOS": False},
    )
    body = rule_to_remote(rule)
    assert body["name"] == "TrueHD ATMOS"
    assert body["includeCustomFormatWhenRenaming"] is True
    assert [s["name"] for s in body["specifications"]] == ["TrueHD"]
    assert body["specifications"][0]["fields"] == [{"name": "value", "value": "\\bTrueHD\\b"}]


def test_extract_trash_id_sources() -> None:
    assert extract_trash_id({"trash_id": TID, "name": "x"}) == TID
    assert extract_trash_id(
        {"name": "x", "specifications": [{"name": "s", "fields": [{"name": "trash_id", "value": TID}]}]}
    ) == TID
    assert extract_trash_id({"name": f"DV HDR10 [{TID.upper()}]"}) == TID
    assert extract_trash_id({"name": "Plain name"}) is None


def test_quality_items_parse_and_dump() -> None:
    raw = [
        {"quality": {"id": 1, "name": "SDTV"}, "items": [], "allowed": False},
        {
            "id": 1001,
            "name": "WEB 1080p",
            "allowed": True,
            "items": [
                {"quality": {"id": 3, "name": "WEBDL-1080p"}, "items": [], "allowed": True},
                {"quality": {"id": 15, "name": "WEBRip-1080p"}, "items": [], "allowed": True},
            ],
        },
    ]
    items = parse_items(raw)
    assert isinstance(items[0], QualityIndividual)
    assert isinstance(items[1], QualityGroup)
    assert [m.id for m in items[1].items] == [3, 15]
    assert dump_items(items) == raw


def test_cutoff_resolution_prefers_group_for_members() -> None:
    items = parse_items(
        [
            {"quality": {"id": 7, "name": "Bluray-1080p"}, "items": [], "allowed": True},
            {"id": 1000, "name": "WEB 1080p", "allowed": True, "items": [{"quality": {"id": 3, "name": "WEBDL-1080p"}, "allowed": True}]},
        ]
    )
    assert find_cutoff(items, "bluray 1080p") == 7
    assert find_cutoff(items, "WEBDL-1080p") == 1000
    assert find_cutoff(items, "Remux-2160p") is None
    assert fallback_cutoff(items) == 1000
    assert fallback_cutoff([]) == 1


def test_schema_index_lookup_by_id_or_normalized_name() -> None:
    idx = schema_index([{"quality": {"id": 3, "name": "WEBDL-1080p"}, "items": [], "allowed": True}])
    hit = idx.lookup(name="webdl 1080p")
    assert hit is not None and hit.id == 3 and hit.allowed is False
    assert idx.lookup(3) is hit
    assert idx.lookup(99, "nope") is None
