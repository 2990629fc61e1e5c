"""Tests for project configuration loading (config.py)."""

from __future__ import annotations

from pathlib import Path

import yaml

from taskwerk.config import (
    get_delete_config,
    get_lifecycle_config,
    get_logging_config,
    get_store_config,
    load_config,
)


def _write_config(project_dir: Path, data: object) -> None:
    state = project_dir / ".taskwerk"
    state.mkdir(exist_ok=True)
    (state / "config.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")


class TestLoadConfig:
    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_config(tmp_path) == ({}, None)

    def test_valid_file(self, tmp_path: Path) -> None:
        _write_config(tmp_path, {"lifecycle": {"cascade": True}})
        config, err = load_config(tmp_path)
        assert err is None
        assert config["lifecycle"]["cascade"] is True

    def test_non_mapping_reports_error(self, tmp_path: Path) -> None:
        _write_config(tmp_path, ["not", "a", "mapping"])
        config, err = load_config(tmp_path)
        assert config == {}
        assert err is not None and "expected object" in err


class TestSections:
    def test_defaults(self) -> None:
        assert get_lifecycle_config({}) == {"cascade": False}
        assert get_delete_config({}) == {"child_policy": None}
        assert get_store_config({}) == {"id_prefix": "TASK"}
        assert get_logging_config({}) == {"level": "INFO", "file": None}

    def test_invalid_child_policy_is_ignored(self) -> None:
        assert get_delete_config({"delete": {"child_policy": "shred"}}) == {"child_policy": None}
        assert get_delete_config({"delete": {"child_policy": "cascade"}}) == {"child_policy": "cascade"}

    def test_logging_section(self) -> None:
        cfg = {"logging": {"level": "debug", "file": ".taskwerk/taskwerk.log"}}
        assert get_logging_config(cfg) == {"level": "DEBUG", "file": ".taskwerk/taskwerk.log"}

    def test_wrong_types_fall_back(self) -> None:
        assert get_lifecycle_config({"lifecycle": "yes"}) == {"cascade": False}
        assert get_store_config({"store": {"id_prefix": "  "}}) == {"id_prefix": "TASK"}
