import pytest
from pydantic import ValidationError

from calcplan.core.models import Attempt, Detail, DetailKind, Game, Plan, PlanInput


def test_plan_input_normalizes_tables():
    plan_input = PlanInput(game=Game.GS, name="X", tables={"e": [" Skill DMG ", "Skill DMG", "", "CD"]})
    assert plan_input.tables == {"e": ["Skill DMG", "CD"]}
    assert plan_input.has_table("e", "Skill DMG")
    assert not plan_input.has_table("q", "Skill DMG")
    assert not plan_input.has_table(None, "Skill DMG")


def test_plan_input_rejects_unknown_talent_key():
    with pytest.raises(ValidationError):
        PlanInput(game=Game.GS, name="X", tables={"x": ["Skill DMG"]})


def test_plan_input_is_frozen():
    plan_input = PlanInput(game=Game.SR, name="X")
    with pytest.raises(ValidationError):
        plan_input.name = "Y"


def test_detail_requires_table_unless_reaction():
    with pytest.raises(ValidationError):
        Detail(title="E", talent="e")
    with pytest.raises(ValidationError):
        Detail(title="Swirl", kind=DetailKind.REACTION)
    row = Detail(title="Swirl", kind=DetailKind.REACTION, reaction="swirl")
    assert row.damage_key == ""


def test_detail_damage_key_defaults_to_talent():
    assert Detail(title="E", talent="e", table="T").damage_key == "e"
    assert Detail(title="E", talent="e", table="T", key=" e,nightsoul ").damage_key == "e,nightsoul"


def test_detail_identity_separates_derived_rows():
    base = Detail(title="E", talent="e", table="T")
    total = base.model_copy(update={"title": "E Total", "raw_expr": "dmg(1, \"e\")"})
    assert base.identity() != total.identity()


def test_plan_caps():
    rows = [Detail(title=f"E{i}", talent="e", table="T") for i in range(21)]
    with pytest.raises(ValidationError):
        Plan(main_attr_list="atk", details=rows)
    with pytest.raises(ValidationError):
        Plan(main_attr_list="", details=rows[:1])


def test_attempt_state_machine():
    attempt = Attempt(number=1, max_attempts=3)
    assert not attempt.is_final
    second = attempt.next("no valid details")
    assert second.number == 2
    assert second.last_error == "no valid details"
    third = second.next("mainAttr is empty")
    assert third.is_final and not third.exhausted
    assert third.next("x").exhausted
    # Frozen: next() returns a new state
    assert attempt.number == 1
