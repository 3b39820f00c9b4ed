# GuideSync test scripts
from __future__ import annotations

from gs_platform.engine import validate
from gs_platform.models import TemplateConfig, TemplateGroup, TemplateRule


def test_valid_config_has_no_errors(seed) -> None:
    cat = seed.cf("a" * 32, "Remux Tier 01", 1750)
    cfg = TemplateConfig.from_dict({"customFormats": [seed.rule(cat)]})
    assert validate(cfg) == []


def test_structural_problems_are_listed() -> None:
    cfg = TemplateConfig(
        custom_formats=[
            TemplateRule(trash_id="", name="No Id", original_config={"trash_id": "x"}),
            TemplateRule(trash_id="b" * 32, name="", original_config={}),
            TemplateRule(trash_id="c" * 32, name="Bad Conditions", original_config={"x": 1}, conditions_enabled=[]),  # type: ignore[arg-type]
        ],
        custom_format_groups=[TemplateGroup(trash_id="g", name="G", original_config={}, enabled="yes")],  # type: ignore[arg-type]
    )
    errors = validate(cfg)
    assert "custom format No Id: missing trashId" in errors
    assert any("missing name" in e for e in errors)
    assert any("missing originalConfig" in e for e in errors)
    assert "custom format Bad Conditions: conditionsEnabled must be an object" in errors
    assert "custom format group G: enabled must be a boolean" in errors


def test_null_conditions_from_storage_are_rejected() -> None:
    cfg = TemplateConfig.from_dict(
        {"customFormats": [{"trashId": "d" * 32, "name": "Broken", "originalConfig": {"a": 1}, "conditionsEnabled": "nope"}]}
    )
    assert validate(cfg) == ["custom format Broken: conditionsEnabled must be an object"]
