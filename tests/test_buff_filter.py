from calcplan.core.models import Buff, Game, PlanInput
from calcplan.validation.buff_filter import BuffFilter, constellation_hints, is_damage_like_key, is_one_shot


def _filter(buffs, **kwargs):
    plan_input = PlanInput(game=kwargs.pop("game", Game.GS), name="Buffs", **kwargs)
    return BuffFilter().filter(buffs, plan_input)


def test_one_shot_buff_loses_scoped_keys():
    buff = Buff(title="下次元素战技伤害提高", data={"eDmg": 30, "atkPct": 10})
    (kept,) = _filter([buff])
    assert kept.data == {"atkPct": 10}


def test_multiplier_keys_need_multiplier_wording():
    vague = Buff(title="重击伤害提高", data={"a2Multi": 20})
    explicit = Buff(title="重击倍率提高到150%", data={"a2Multi": 150})
    assert _filter([vague, explicit]) == [explicit]


def test_damage_keys_need_damage_wording():
    (kept,) = _filter([Buff(title="攻击力提高", data={"atkPct": 20, "dmg": 10})])
    assert kept.data == {"atkPct": 20}


def test_buff_without_effect_keys_is_removed():
    assert _filter([Buff(title="提示", data={"dmg": 5, "_note": 1})]) == []


def test_untouched_buff_is_returned_as_is():
    buff = Buff(title="元素爆发伤害提高", data={"qDmg": 15})
    assert _filter([buff])[0] is buff


def test_constellation_hint_supplies_evidence():
    buff = Buff(title="二命效果", constellation_req=2, data={"qDmg": 15})
    assert _filter([buff]) == []
    assert _filter([buff], buff_hints=["2命: 元素爆发伤害提高15%"]) == [buff]


def test_constellation_hints_by_level():
    plan_input = PlanInput(
        game=Game.GS,
        name="Hints",
        buff_hints=["2命: 元素爆发伤害提高15%", "C4: more energy", "普通提示", "2命：额外效果"],
    )
    hints = constellation_hints(plan_input)
    assert sorted(hints) == [2, 4]
    assert hints[2].endswith("额外效果")


def test_helpers():
    assert is_one_shot("下一次普通攻击造成的伤害提高")
    assert is_one_shot("The next Skill deals more DMG")
    assert is_one_shot("伤害提高为原本的150%，使用后移除")
    assert not is_one_shot("攻击力提高20%")
    assert is_damage_like_key(Game.GS, "qDmg")
    assert is_damage_like_key(Game.SR, "tPlus")
    assert not is_damage_like_key(Game.GS, "tPlus")
    assert not is_damage_like_key(Game.GS, "_qDmg")
    assert not is_damage_like_key(Game.GS, "atkPct")
