import json
from pathlib import Path

import pytest

from calcplan.core.config_loader import ConfigLoader
from calcplan.core.models import Game

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


def test_bundled_inputs_load():
    gs = ConfigLoader.load_input(CONFIG_DIR / "inputs" / "example_gs.yaml")
    sr = ConfigLoader.load_input(CONFIG_DIR / "inputs" / "example_sr.yaml")
    assert gs.game == Game.GS
    assert sr.game == Game.SR
    assert sr.has_table("e", "相邻目标伤害")


def test_bundled_settings_load():
    settings = ConfigLoader.load_settings(CONFIG_DIR / "compiler.yaml")
    assert settings.model.enabled is False
    assert settings.model.max_attempts == 3
    assert settings.cache.root_dir == ".cache/calcplan"


def test_default_settings():
    settings = ConfigLoader.load_settings()
    assert settings.cache.enabled is True
    assert settings.log_level == "INFO"


def test_json_input(tmp_path):
    path = tmp_path / "input.json"
    path.write_text(
        json.dumps({"game": "sr", "name": "J", "tables": {"e": ["Skill DMG"]}}),
        encoding="utf-8",
    )
    assert ConfigLoader.load_input(path).tables == {"e": ["Skill DMG"]}


def test_bad_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader.load_input(tmp_path / "missing.yaml")
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Expected a mapping"):
        ConfigLoader.load_input(path)
