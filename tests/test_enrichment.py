import pytest

from calcplan.core.models import Detail, DetailKind, Game, Plan, PlanInput
from calcplan.render.renderer import CodeRenderer
from calcplan.sandbox.validator import load_script
from calcplan.validation.enrichment import (
    PlanEnricher,
    blast_base_title,
    infer_hit_count,
    infer_repeat_count,
)
from calcplan.validation.eviction import DefaultEvictionPolicy, DetailBudget, NoEvictionPolicy
from calcplan.validation.pruning import has_reaction_evidence, prune_special_rows

from conftest import RecordingContext


def _row(title, talent="a", table="一段伤害", **kwargs):
    return Detail(title=title, talent=talent, table=table, **kwargs)


# -----------------------------------------------------------------------------
# Blast totals
# -----------------------------------------------------------------------------
def test_blast_complete_row_is_one_combined_call(sr_blast_input):
    details = [
        _row("Skill (Main Target)", talent="e", table="Skill DMG", key="e"),
        _row("Skill (Adjacent Targets)", talent="e", table="Adjacent DMG", key="e"),
    ]
    enriched = PlanEnricher().enrich(details, sr_blast_input)
    complete = next(d for d in enriched if d.title == "Skill (Complete)")
    assert complete.raw_expr is not None
    assert complete.raw_expr.count("dmg(") == 1

    script = CodeRenderer().render(Plan(main_attr_list="atk", details=enriched), sr_blast_input)
    loaded = load_script(script)
    row = next(d for d in loaded.details if d["title"] == "Skill (Complete)")

    ctx = RecordingContext(game=Game.SR, talent={"e": {"Skill DMG": 0.5, "Adjacent DMG": 0.2}})
    result = row["dmg"].invoke(ctx.bindings())
    assert len(ctx.calls) == 1
    name, (pct, key, ele) = ctx.calls[0]
    assert (name, key, ele) == ("dmg", "e", None)
    assert pct == pytest.approx(0.9)
    assert result["dmg"] == pytest.approx(0.9)


def test_blast_repeat_count_scales_the_result():
    plan_input = PlanInput(
        game=Game.SR,
        name="Repeat",
        tables={"e": ["Skill DMG", "Adjacent DMG"]},
        talent_desc={"e": "Deals damage to one enemy and its neighbours. This repeats 3 times."},
    )
    details = [
        _row("Skill (Main Target)", talent="e", table="Skill DMG", key="e"),
        _row("Skill (Adjacent Targets)", talent="e", table="Adjacent DMG", key="e"),
    ]
    enriched = PlanEnricher().enrich(details, plan_input)
    complete = next(d for d in enriched if d.title == "Skill (Complete)")
    assert "* 3" in complete.raw_expr


def test_blast_helpers():
    assert blast_base_title("战技（主目标）") == "战技"
    assert blast_base_title("Skill (Adjacent Targets)") == "Skill"
    assert infer_repeat_count("可重复2次") == 2
    assert infer_repeat_count("repeats 9 times") == 1
    assert infer_repeat_count(None) == 1


# -----------------------------------------------------------------------------
# Multi-hit totals
# -----------------------------------------------------------------------------
def test_hit_count_total_from_description():
    plan_input = PlanInput(
        game=Game.GS,
        name="Hits",
        tables={"e": ["冰锥伤害"]},
        talent_desc={"e": "召唤冰锥，共造成4次冰锥伤害。"},
    )
    assert infer_hit_count(plan_input.talent_desc["e"], "冰锥") == 4
    enriched = PlanEnricher().enrich([_row("冰锥伤害", talent="e", table="冰锥伤害", key="e")], plan_input)
    total = next(d for d in enriched if "总伤害" in d.title)
    assert "* 4" in total.raw_expr


def test_stat_times_total():
    plan_input = PlanInput(
        game=Game.GS,
        name="Times",
        tables={"q": ["技能伤害"]},
        table_samples={"q": {"技能伤害": [80.0, 3]}},
        table_text_samples={"q": {"技能伤害": "80%攻击力×3"}},
    )
    enriched = PlanEnricher().enrich([_row("Q伤害", talent="q", table="技能伤害", key="q")], plan_input)
    total = next(d for d in enriched if d.title == "Q总伤害")
    assert "isList" in total.raw_expr


# -----------------------------------------------------------------------------
# Support, alias and reaction rows
# -----------------------------------------------------------------------------
def test_support_rows_are_added(gs_healer_input):
    enriched = PlanEnricher().enrich([_row("E伤害", talent="e", table="技能伤害", key="e")], gs_healer_input)
    heal = next(d for d in enriched if d.kind == DetailKind.HEAL)
    assert heal.table == "治疗量"
    assert heal.scale_stat == "hp"


def test_alias_rows(gs_input):
    enriched = PlanEnricher().enrich([_row("E伤害", talent="e", table="技能伤害", key="e")], gs_input)
    keys = {d.damage_key: d for d in enriched}
    assert keys["a2"].table == "重击伤害"
    assert keys["a3"].table == "低空/高空坠地冲击伤害"
    assert keys["a"].element == "phy"


def test_reaction_variants_need_evidence(gs_input):
    base = [_row("E伤害", talent="e", table="技能伤害", key="e")]
    enriched = PlanEnricher().enrich(base, gs_input)
    assert not any(d.element == "vaporize" for d in enriched)

    evidenced = gs_input.model_copy(update={"buff_hints": ["触发蒸发反应时，伤害提高15%"]})
    enriched = PlanEnricher().enrich(base, evidenced)
    variant = next(d for d in enriched if d.element == "vaporize")
    assert variant.title == "E蒸发"


def test_burst_state_rows_are_remapped():
    plan_input = PlanInput(
        game=Game.GS,
        name="Infuser",
        tables={"a": ["一段伤害"], "q": ["一段伤害", "重击伤害"]},
        talent_desc={"q": "施放后普通攻击与重击转为元素伤害。"},
    )
    details = [
        _row("Q一段", talent="q", table="一段伤害", key="q"),
        _row("Q重击", talent="q", table="重击伤害", key="q"),
    ]
    enriched = PlanEnricher().enrich(details, plan_input)
    remapped = {d.title: d for d in enriched if d.talent == "q"}
    assert remapped["Q状态·普攻首段"].damage_key == "a"
    assert remapped["Q状态·重击伤害"].damage_key == "a2"
    assert remapped["Q状态·普攻首段"].params == {"q": True}


# -----------------------------------------------------------------------------
# Eviction
# -----------------------------------------------------------------------------
def test_eviction_prefers_latest_segment_row():
    rows = [_row("E伤害", talent="e", table="技能伤害")]
    rows += [_row(f"{n}段伤害", table=f"{n}段伤害") for n in "一二三"]
    rows += [_row("重击伤害", table="重击伤害", key="a2")]
    budget = DetailBudget(rows, cap=5)
    assert budget.full

    incoming = _row("Q伤害", talent="q", table="技能伤害")
    assert budget.add(incoming)
    assert [d.title for d in budget.evicted] == ["三段伤害"]
    assert budget.details[3] is incoming


def test_eviction_falls_back_to_charged_then_rejects():
    rows = [_row("E伤害", talent="e", table="技能伤害"), _row("重击伤害", table="重击伤害", key="a2")]
    budget = DetailBudget(rows, cap=2)
    assert budget.add(_row("Q伤害", talent="q", table="技能伤害"))
    assert budget.evicted[0].title == "重击伤害"
    assert not budget.add(_row("Q2伤害", talent="q", table="技能伤害2"))


def test_no_eviction_policy_rejects_when_full():
    budget = DetailBudget([_row("一段伤害")], cap=1, policy=NoEvictionPolicy())
    assert not budget.add(_row("E伤害", talent="e", table="技能伤害"))
    assert len(budget) == 1


def test_budget_rejects_duplicates():
    budget = DetailBudget([_row("一段伤害")], cap=5, policy=DefaultEvictionPolicy())
    assert not budget.add(_row("一段 伤害"))
    assert not budget.add(_row("Other title"))
    assert len(budget) == 1


def test_enrichment_never_exceeds_cap(gs_input):
    rows = [_row(f"Row {i}", talent="e", table="技能伤害", key=f"k{i}") for i in range(20)]
    assert len(PlanEnricher().enrich(rows, gs_input)) == 20


# -----------------------------------------------------------------------------
# Pruning
# -----------------------------------------------------------------------------
def test_pruning_requires_evidence_and_caps_special_rows():
    plan_input = PlanInput(game=Game.GS, name="Swirler", element="anemo", buff_hints=["扩散反应伤害提高"])
    rows = [
        Detail(title="扩散", kind=DetailKind.REACTION, reaction="swirl"),
        Detail(title="绽放", kind=DetailKind.REACTION, reaction="bloom"),
        Detail(title="扩散2", kind=DetailKind.REACTION, reaction="swirl"),
        Detail(title="扩散3", kind=DetailKind.REACTION, reaction="swirl"),
    ]
    assert has_reaction_evidence(plan_input, "swirl")
    assert not has_reaction_evidence(plan_input, "bloom")
    kept = prune_special_rows(rows, plan_input)
    assert [d.title for d in kept] == ["扩散", "扩散2"]


def test_em_wording_counts_as_transformative_evidence():
    plan_input = PlanInput(game=Game.GS, name="EM", buff_hints=["元素精通提高100点，反应伤害提升"])
    assert has_reaction_evidence(plan_input, "bloom")
    assert not has_reaction_evidence(plan_input, "vaporize")
