# GuideSync test scripts
from __future__ import annotations

import io
import json

from gs_platform import config_base as config_module
from gs_platform._logging import Logger


def test_defaults_when_config_missing(config_base) -> None:
    cfg = config_module.load_config()
    assert cfg["catalog"]["repo"] == "TRaSH-Guides/Guides"
    assert cfg["catalog"]["quality_order"] == "highest_first"
    assert cfg["deploy"]["max_workers"] == 4


def test_user_values_merge_over_defaults_and_are_normalized(config_base) -> None:
    (config_base / "config.json").write_text(
        json.dumps({"catalog": {"quality_order": "sideways", "branch": "dev"}, "deploy": {"max_workers": 0}}),
        encoding="utf-8",
    )
    cfg = config_module.load_config()
    assert cfg["catalog"]["branch"] == "dev"
    assert cfg["catalog"]["repo"] == "TRaSH-Guides/Guides"
    assert cfg["catalog"]["quality_order"] == "highest_first"
    assert cfg["deploy"]["max_workers"] == 1


def test_save_config_round_trip(config_base) -> None:
    cb = config_module
    cfg = cb.load_config()
    cfg["catalog"]["quality_order"] = "lowest_first"
    cb.save_config(cfg)
    assert cb.load_config()["catalog"]["quality_order"] == "lowest_first"
    assert cb.config_path() == config_base / "config.json"


def test_logger_respects_level_and_json_sink(tmp_path) -> None:
    sink = tmp_path / "log.jsonl"
    buf = io.StringIO()
    log = Logger(stream=buf, level="warn", use_color=False).child("deploy")
    log.enable_json(str(sink))
    log.info("hidden")
    log.warn("shown", extra={"instance": "i1"})

    out = buf.getvalue()
    assert "hidden" not in out
    assert "shown" in out
    rows = [json.loads(line) for line in sink.read_text("utf-8").splitlines()]
    assert rows[-1]["msg"] == "shown"
    assert rows[-1]["ctx"] == {"module": "deploy"}
    assert rows[-1]["extra"] == {"instance": "i1"}
    assert "[deploy] WARN shown" in out
