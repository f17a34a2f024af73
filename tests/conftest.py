import json
from typing import Any

import pytest

from calcplan.core.models import Game, PlanInput
from calcplan.sandbox.context import CalcContext, zero_result
from calcplan.sandbox.interpreter import to_number
from calcplan.utils.llm_client import ModelClient


class FakeModelClient(ModelClient):
    """Replays canned responses and records every message list it was sent."""

    model = "fake-model"

    def __init__(self, responses: list[Any]):
        self.responses = list(responses)
        self.calls: list[list[dict[str, str]]] = []

    def send(self, messages, temperature=None):
        self.calls.append(messages)
        if not self.responses:
            raise RuntimeError("no more canned responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response, ensure_ascii=False)
        return response


class RecordingContext(CalcContext):
    """Context over plain dict tables that records every helper call."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls: list[tuple[str, tuple]] = []

    def damage(self, pct=None, key=None, ele=None):
        self.calls.append(("dmg", (to_number(pct), key, ele)))
        return {"dmg": to_number(pct), "avg": to_number(pct)}

    def basic_damage(self, base=None, key=None, ele=None):
        self.calls.append(("dmg.basic", (to_number(base), key, ele)))
        return {"dmg": to_number(base), "avg": to_number(base)}

    def heal(self, amount=None):
        self.calls.append(("heal", (to_number(amount),)))
        return {"dmg": to_number(amount), "avg": to_number(amount)}

    def shield(self, amount=None):
        self.calls.append(("shield", (to_number(amount),)))
        return {"dmg": to_number(amount), "avg": to_number(amount)}

    def reaction(self, reaction_id=None):
        self.calls.append(("reaction", (reaction_id,)))
        return zero_result()


@pytest.fixture
def gs_input():
    return PlanInput(
        game=Game.GS,
        name="Test Pyro",
        element="pyro",
        weapon="sword",
        tables={
            "a": ["一段伤害", "二段伤害", "重击伤害", "低空/高空坠地冲击伤害"],
            "e": ["技能伤害", "冷却时间"],
            "q": ["技能伤害", "持续时间", "元素能量"],
        },
    )


@pytest.fixture
def gs_healer_input():
    return PlanInput(
        game=Game.GS,
        name="Test Healer",
        element="hydro",
        weapon="catalyst",
        tables={
            "a": ["一段伤害"],
            "e": ["技能伤害", "治疗量"],
            "q": ["技能伤害"],
        },
        table_units={"e": {"治疗量": "生命值上限"}},
    )


@pytest.fixture
def sr_blast_input():
    return PlanInput(
        game=Game.SR,
        name="Test Blast",
        element="fire",
        tables={"e": ["Skill DMG", "Adjacent DMG"]},
    )


@pytest.fixture
def scenario_input():
    return PlanInput(game=Game.GS, name="Scenario", tables={"e": ["Skill DMG", "Skill DMG2"]})


@pytest.fixture
def valid_raw_plan():
    return {
        "mainAttr": "atk,cpct,cdmg",
        "defDmgKey": "e",
        "details": [
            {"title": "E伤害", "talent": "e", "table": "技能伤害", "key": "e"},
            {"title": "Q伤害", "talent": "q", "table": "技能伤害", "key": "q"},
        ],
        "buffs": [
            {"title": "2命: 元素爆发伤害提高15%", "cons": 2, "data": {"qDmg": 15}},
        ],
    }
