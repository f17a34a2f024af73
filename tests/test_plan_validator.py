import pytest

from calcplan.core.errors import PlanValidationError
from calcplan.core.models import DetailKind, Game, Plan, PlanInput
from calcplan.validation import plan_validator
from calcplan.validation.plan_validator import PlanValidator, check_expression, normalize_main_attr


def test_valid_plan_passes(gs_input, valid_raw_plan):
    plan = PlanValidator().validate(valid_raw_plan, gs_input)
    assert plan.main_attr_list == "atk,cpct,cdmg"
    assert plan.default_damage_key == "e"
    assert [d.title for d in plan.details[:2]] == ["E伤害", "Q伤害"]
    for detail in plan.details:
        if detail.kind != DetailKind.REACTION:
            assert gs_input.has_table(detail.talent, detail.table)
    assert plan.buffs[0].data == {"qDmg": 15.0}


def test_unknown_table_is_rejected_with_feedback(scenario_input):
    raw = {"details": [{"title": "X", "talent": "e", "table": "Nonexistent"}]}
    with pytest.raises(PlanValidationError) as info:
        PlanValidator().validate(raw, scenario_input)
    message = str(info.value)
    assert "no valid details" in message
    assert "Nonexistent" in message
    assert ("e", "Nonexistent") in info.value.rejected_tables


def test_empty_main_attr(gs_input, valid_raw_plan):
    raw = {**valid_raw_plan, "mainAttr": " , "}
    with pytest.raises(PlanValidationError, match="mainAttr is empty"):
        PlanValidator().validate(raw, gs_input)


def test_non_object_payload(gs_input):
    with pytest.raises(PlanValidationError):
        PlanValidator().validate(["not", "a", "plan"], gs_input)


def test_wrong_typed_fields_are_treated_as_absent(gs_input):
    raw = {
        "mainAttr": "atk",
        "details": [
            {
                "title": 42,
                "kind": "bogus",
                "talent": "e",
                "table": "技能伤害",
                "pick": "first",
                "cons": 9,
                "stat": "luck",
                "params": {"stacks": 3, "bad": [1, 2], "flag": True},
            },
        ],
    }
    plan = PlanValidator().validate(raw, gs_input)
    detail = plan.details[0]
    assert detail.kind == DetailKind.DMG
    assert detail.title == "技能伤害"
    assert detail.pick is None
    assert detail.cons is None
    assert detail.scale_stat is None
    assert detail.params == {"stacks": 3, "flag": True}


def test_reactions_are_canonicalized(gs_input, valid_raw_plan):
    raw = dict(valid_raw_plan)
    raw["details"] = valid_raw_plan["details"] + [
        {"title": "扩散", "kind": "reaction", "reaction": "SWIRL"},
        {"title": "Made up", "kind": "reaction", "reaction": "explode"},
        {"title": "E蒸发", "kind": "reaction", "reaction": "vaporize", "talent": "e", "table": "技能伤害"},
    ]
    plan = PlanValidator().parse(raw, gs_input)
    titles = {d.title: d for d in plan.details}
    assert titles["扩散"].reaction == "swirl"
    assert "Made up" not in titles
    # Amplifying reactions become a damage row with an element override
    assert titles["E蒸发"].kind == DetailKind.DMG
    assert titles["E蒸发"].element == "vaporize"


def test_expressions_are_checked(gs_input, valid_raw_plan):
    raw = dict(valid_raw_plan)
    raw["details"] = [
        {"title": "ok", "talent": "e", "table": "技能伤害", "check": "params.stacks > 2", "dmgExpr": "dmg(talent.e[\"技能伤害\"] * 2, \"e\")"},
        {"title": "bad names", "talent": "q", "table": "技能伤害", "check": "window.alert(1)", "dmgExpr": "eval(\"x\")"},
    ]
    plan = PlanValidator().parse(raw, gs_input)
    ok, bad = plan.details
    assert ok.check_expr == "params.stacks > 2"
    assert ok.raw_expr.startswith("dmg(")
    assert bad.check_expr is None
    assert bad.raw_expr is None


def test_check_expression_rules():
    assert check_expression("cons >= 2 && params.q") == "cons >= 2 && params.q"
    assert check_expression("=> 1") is None
    assert check_expression("1 +") is None
    assert check_expression("1 # comment") is None
    assert check_expression("foo.bar") is None
    assert check_expression("") is None


def test_normalize_main_attr():
    assert normalize_main_attr(" atk, cpct ,cdmg,atk") == "atk,cpct,cdmg"
    assert normalize_main_attr("atk;drop table, hp") == "hp"
    assert normalize_main_attr(None) == ""


def test_buff_keys_and_values(gs_input, valid_raw_plan):
    raw = dict(valid_raw_plan)
    raw["buffs"] = [
        {"title": "攻击力提高", "data": {"atkPct": 20, "notAKey": 5, "_display": 1}},
        {"title": "only junk", "data": {"notAKey": 5}},
        {"title": "infinite", "data": {"atkPct": float("inf")}},
        {"title": "expr", "data": {"atkPct": "params.stacks * 5", "cpct": "import os"}},
        {"data": {"atkPct": 5}},
    ]
    plan = PlanValidator().parse(raw, gs_input)
    assert [b.title for b in plan.buffs] == ["攻击力提高", "expr"]
    assert plan.buffs[0].data == {"atkPct": 20.0, "_display": 1.0}
    assert plan.buffs[1].data == {"atkPct": "params.stacks * 5"}


def test_caps_are_enforced():
    plan_input = PlanInput(
        game=Game.SR,
        name="Wide",
        tables={"e": [f"Skill DMG {i}" for i in range(40)]},
    )
    raw = {
        "mainAttr": "atk",
        "details": [{"title": f"Row {i}", "talent": "e", "table": f"Skill DMG {i}"} for i in range(40)],
        "buffs": [{"title": f"Buff {i}", "data": {"atkPct": i}} for i in range(40)],
    }
    plan = PlanValidator().validate(raw, plan_input)
    assert len(plan.details) <= 20
    assert len(plan.buffs) <= 30


def test_default_key_must_exist(gs_input, valid_raw_plan):
    plan = PlanValidator().validate({**valid_raw_plan, "defDmgKey": "z"}, gs_input)
    assert plan.default_damage_key is None


def test_refine_does_not_raise_on_empty_details():
    plan = PlanValidator().refine(Plan(main_attr_list="atk"), PlanInput(game=Game.GS, name="Empty"))
    assert plan.details == []


def test_non_ascii_digits_drop_only_that_value(gs_input, valid_raw_plan):
    raw = dict(valid_raw_plan)
    raw["buffs"] = [{"title": "暴击率提高", "data": {"atkPct": "2²", "cpct": 10}}]
    plan = PlanValidator().validate(raw, gs_input)
    assert [d.title for d in plan.details[:2]] == ["E伤害", "Q伤害"]
    assert plan.buffs[0].data == {"cpct": 10.0}
    assert check_expression("²") is None
    assert check_expression("1٢") is None


def test_long_flat_expression_is_rejected(gs_input, valid_raw_plan, monkeypatch):
    chain = "+".join(["1"] * 3000)
    assert check_expression(chain) is None
    with monkeypatch.context() as m:
        m.setattr(plan_validator, "MAX_EXPRESSION_LENGTH", len(chain))
        assert check_expression(chain) is None
    raw = dict(valid_raw_plan)
    raw["buffs"] = [{"title": "攻击力提高", "data": {"atkPct": chain, "cpct": 10}}]
    plan = PlanValidator().validate(raw, gs_input)
    assert plan.buffs[0].data == {"cpct": 10.0}
    assert check_expression("+".join(["1"] * 50)) is not None


def test_validate_raises_when_pruning_empties_the_plan():
    plan_input = PlanInput(game=Game.GS, name="Anemo", element="anemo", tables={"e": ["Skill Cooldown"]})
    raw = {"mainAttr": "atk", "details": [{"title": "扩散", "kind": "reaction", "reaction": "swirl"}]}
    validator = PlanValidator()
    assert len(validator.parse(raw, plan_input).details) == 1
    with pytest.raises(PlanValidationError, match="no valid details"):
        validator.validate(raw, plan_input)
