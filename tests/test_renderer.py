import pytest

from calcplan.core.errors import RenderError
from calcplan.core.models import Buff, Detail, DetailKind, Game, Plan, Provenance
from calcplan.render.renderer import CodeRenderer, default_damage_index, default_damage_key
from calcplan.sandbox.validator import load_script

from conftest import RecordingContext


def _plan(**kwargs):
    details = kwargs.pop(
        "details",
        [Detail(title="E伤害", talent="e", table="技能伤害", key="e")],
    )
    return Plan(main_attr_list="atk,cpct,cdmg", details=details, **kwargs)


def test_header_and_exports(gs_input):
    text = CodeRenderer().render(_plan(), gs_input)
    assert text.startswith("# Auto-generated by calcplan:heuristic.\n# Test Pyro (gs)\n")

    loaded = load_script(text)
    assert loaded.game == Game.GS
    assert loaded.created_by == Provenance.HEURISTIC.value
    assert loaded.main_attr == "atk,cpct,cdmg"
    assert loaded.def_dmg_key == "e"
    assert loaded.def_dmg_idx == 0
    assert loaded.buffs == []


def test_custom_provenance_tag(gs_input):
    text = CodeRenderer().render(_plan(), gs_input, "my-tool")
    assert "# Auto-generated by my-tool." in text
    assert load_script(text).created_by == "my-tool"


def test_rendering_is_deterministic(gs_input):
    plan = _plan(buffs=[Buff(title="攻击力提高", data={"atkPct": 20.0})])
    assert CodeRenderer().render(plan, gs_input) == CodeRenderer().render(plan, gs_input)


def test_plain_damage_row(gs_input):
    text = CodeRenderer().render(_plan(), gs_input)
    assert 'dmg(num(pick(talent.e["技能伤害"], 0)), "e")' in text


def test_non_attack_scaling_uses_basic_damage(gs_input):
    detail = Detail(title="E伤害", talent="e", table="技能伤害", key="e", scale_stat="hp", element="vaporize")
    text = CodeRenderer().render(_plan(details=[detail]), gs_input)
    assert 'dmg.basic(calc(attr.hp) * toRatio(num(pick(talent.e["技能伤害"], 0))), "e", "vaporize")' in text


def test_verbatim_expression_is_parenthesized(gs_input):
    detail = Detail(
        title="E两段",
        talent="e",
        table="技能伤害",
        raw_expr='dmg(talent.e["技能伤害"] * 2, "e")',
    )
    text = CodeRenderer().render(_plan(details=[detail]), gs_input)
    assert '=> (dmg(talent.e["技能伤害"] * 2, "e"))' in text


def test_support_and_reaction_rows(gs_healer_input):
    details = [
        Detail(title="E治疗", kind=DetailKind.HEAL, talent="e", table="治疗量", scale_stat="hp"),
        Detail(title="E伤害", talent="e", table="技能伤害", key="e"),
        Detail(title="绽放", kind=DetailKind.REACTION, reaction="bloom"),
    ]
    text = CodeRenderer().render(_plan(details=details), gs_healer_input)
    assert 'heal(isList(talent.e["治疗量"])' in text
    assert 'reaction("bloom")' in text

    loaded = load_script(text)
    assert loaded.def_dmg_key == "e"
    assert loaded.def_dmg_idx == 1
    assert "dmgKey" not in loaded.details[2]

    ctx = RecordingContext(game=Game.GS, talent={"e": {"治疗量": 10.0}}, attr={"hp": {"base": 1000.0}})
    loaded.details[0]["dmg"].invoke(ctx.bindings())
    ((name, (amount,)),) = ctx.calls
    assert name == "heal"
    assert amount == pytest.approx(100.0)


def test_flat_heal_values_are_used_as_is(gs_healer_input):
    detail = Detail(title="E治疗", kind=DetailKind.HEAL, talent="e", table="治疗量", scale_stat="hp")
    loaded = load_script(CodeRenderer().render(_plan(details=[detail]), gs_healer_input))
    ctx = RecordingContext(game=Game.GS, talent={"e": {"治疗量": 1500.0}}, attr={"hp": {"base": 1000.0}})
    loaded.details[0]["dmg"].invoke(ctx.bindings())
    assert ctx.calls == [("heal", (1500.0,))]


def test_params_cons_and_check(gs_input):
    detail = Detail(
        title="Q状态",
        talent="q",
        table="技能伤害",
        params={"q": True, "stacks": 2, "skip": [1]},
        cons=2,
        check_expr="params.q",
    )
    text = CodeRenderer().render(_plan(details=[detail]), gs_input)
    assert "params: {q: true, stacks: 2}" in text
    assert "cons: 2" in text
    assert "check: => (params.q)" in text


def test_buff_records(gs_input):
    buff = Buff(
        title="2命",
        sort=3,
        constellation_req=2,
        check_expr="params.q",
        data={"qDmg": 15.0, "atkPct": "params.stacks * 5"},
    )
    loaded = load_script(CodeRenderer().render(_plan(buffs=[buff]), gs_input))
    (record,) = loaded.buffs
    assert record["title"] == "2命"
    assert record["sort"] == 3.0
    assert record["cons"] == 2.0
    assert record["data"]["qDmg"] == 15.0
    assert record["data"]["atkPct"].invoke({"params": {"stacks": 4.0}}) == 20.0


def test_default_key_and_index():
    reaction = Detail(title="扩散", kind=DetailKind.REACTION, reaction="swirl")
    q_row = Detail(title="Q伤害", talent="q", table="技能伤害")
    e_row = Detail(title="E伤害", talent="e", table="技能伤害")

    plan = _plan(details=[reaction, q_row, e_row])
    assert default_damage_key(plan) == "q"
    assert default_damage_index(plan, "q") == 1

    plan = _plan(details=[reaction, q_row, e_row], default_damage_key="e")
    assert default_damage_index(plan, "e") == 2
    assert default_damage_index(plan, "a") == 1

    empty = Plan(main_attr_list="atk")
    assert default_damage_key(empty) == "e"
    assert default_damage_index(empty, "e") == 0


def test_non_finite_buff_value_is_a_render_error(gs_input):
    plan = _plan(buffs=[Buff(title="坏", data={"atkPct": float("inf")})])
    with pytest.raises(RenderError):
        CodeRenderer().render(plan, gs_input)
