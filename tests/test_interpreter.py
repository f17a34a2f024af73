import pytest

from calcplan.core.errors import EvaluationError, ScriptSyntaxError
from calcplan.core.models import Game
from calcplan.sandbox import nodes
from calcplan.sandbox.context import CalcContext, ZeroCalcContext, ZeroStandIn
from calcplan.sandbox.interpreter import Closure, Interpreter, StandIn
from calcplan.sandbox.lexer import tokenize
from calcplan.sandbox.parser import parse_expression, parse_script

from conftest import RecordingContext


def _eval(text, env=None):
    return Interpreter(env or {}).evaluate(parse_expression(text))


# -----------------------------------------------------------------------------
# Lexer and parser
# -----------------------------------------------------------------------------
def test_comments_and_newlines_inside_brackets():
    tokens = tokenize('# header\nx = [1,\n 2] # trailing\n')
    assert [t.value for t in tokens if t.kind == "OP"] == ["=", "[", ",", "]"]
    assert sum(t.kind == "NEWLINE" for t in tokens) == 1


def test_deferred_arrow_is_one_token():
    assert [t.value for t in tokenize("=> 1")][:2] == ["=>", 1.0]


@pytest.mark.parametrize(
    "text",
    ["x = (1", "x = 1)", 'x = "open', "x = 1abc", "x = 1 @ 2", "x = 2\u00b2", "x = \u0662", "true = 1", "x = {a: 1, a: 2}"],
)
def test_syntax_errors(text):
    with pytest.raises(ScriptSyntaxError):
        parse_script(text)


def test_deep_nesting_is_rejected():
    with pytest.raises(ScriptSyntaxError, match="nested too deeply"):
        parse_expression("(" * 100 + "1" + ")" * 100)


def test_trailing_tokens_are_rejected():
    with pytest.raises(ScriptSyntaxError, match="trailing"):
        parse_expression("1 2")


def test_unparse_keeps_precedence():
    for text in ["(1 + 2) * 3", "1 - (2 - 3)", "a ? b : c ? d : e", "!(a && b)", "-(1 + 2)"]:
        expr = parse_expression(text)
        assert parse_expression(nodes.unparse_expr(expr)) == expr


# -----------------------------------------------------------------------------
# Evaluation
# -----------------------------------------------------------------------------
def test_arithmetic_and_precedence():
    assert _eval("1 + 2 * 3") == 7.0
    assert _eval("(1 + 2) * 3") == 9.0
    assert _eval("10 - 4 - 3") == 3.0
    assert _eval("-2 * 3") == -6.0
    assert _eval("7 % 4") == 3.0


def test_division_and_modulo_by_zero_yield_zero():
    assert _eval("5 / 0") == 0.0
    assert _eval("5 % 0") == 0.0


def test_logic_short_circuits():
    assert _eval("false && missing") is False
    assert _eval("1 || missing") == 1.0
    assert _eval("0 || 2") == 2.0
    assert _eval("!0") is True


def test_comparisons_and_ternary():
    assert _eval("2 >= 2 ? \"yes\" : \"no\"") == "yes"
    assert _eval("null == 0") is False
    assert _eval("true == 1") is True
    assert _eval('"b" > "a"') is True


def test_string_concatenation():
    assert _eval('"x" + 2') == "x2"
    assert _eval('"x" + 2.5') == "x2.5"


def test_records_lists_and_indexing():
    env = {"t": {"e": {"技能伤害": [120.0, 30.0]}}}
    assert _eval('t.e["技能伤害"][1]', env) == 30.0
    assert _eval('t.e["技能伤害"][5]', env) is None
    assert _eval("t.missing", env) is None
    assert _eval("[1, 2, 3].length") == 3.0
    assert _eval("{a: 1, \"b c\": 2}") == {"a": 1.0, "b c": 2.0}


def test_unknown_name_raises():
    with pytest.raises(EvaluationError, match="not defined"):
        _eval("window")


def test_plain_values_are_not_callable():
    with pytest.raises(EvaluationError, match="not callable"):
        _eval("x()", {"x": 1.0})
    with pytest.raises(EvaluationError):
        _eval("x.y", {"x": 1.0})


def test_record_index_must_be_string():
    with pytest.raises(EvaluationError):
        _eval("r[0]", {"r": {"a": 1.0}})


def test_deferred_expression_becomes_closure():
    closure = _eval("=> base * params.stacks", {"base": 2.0})
    assert isinstance(closure, Closure)
    assert closure.invoke({"params": {"stacks": 3.0}}) == 6.0
    # Bindings shadow the captured scope
    assert closure.invoke({"base": 10.0, "params": {"stacks": 1.0}}) == 10.0


def test_pure_helpers():
    env = ZeroCalcContext().bindings()
    assert _eval("num(null) + num(\"2\") + num([1])", env) == 2.0
    assert _eval("pick([4, 5], 1)", env) == 5.0
    assert _eval("pick(7, 3)", env) == 7.0
    assert _eval("sum([1, 2, \"x\"])", env) == 3.0
    assert _eval("isList([1]) && !isList(1)", env) is True
    assert _eval("min(3, 1, 2) + max(3, 1, 2)", env) == 4.0
    assert _eval("round(1.256, 2)", env) == 1.26


def test_context_helpers():
    ctx = RecordingContext(game=Game.GS, attr={"hp": {"base": 1000.0, "plus": 100.0, "pct": 50.0}})
    env = ctx.bindings()
    assert _eval("calc(attr.hp)", env) == 1600.0
    assert _eval("toRatio(150)", env) == 1.5
    _eval('dmg.basic(calc(attr.hp) * toRatio(50), "e", "pyro")', env)
    assert ctx.calls == [("dmg.basic", (800.0, "e", "pyro"))]

    sr = RecordingContext(game=Game.SR)
    assert _eval("toRatio([0.5, 2])", sr.bindings()) == 0.5


def test_helper_members_are_whitelisted():
    env = ZeroCalcContext().bindings()
    with pytest.raises(EvaluationError, match="no member"):
        _eval("dmg.__class__", env)


def test_zero_stand_ins_absorb_access():
    env = ZeroCalcContext(truthy=True, array_tables=True).bindings()
    assert _eval('isList(talent.e["技能伤害"])', env) is True
    assert _eval("attr.atk.base + 1", env) == 1.0
    assert _eval("params.anything ? 1 : 2", env) == 1.0
    assert _eval("dmg(pick(talent.q[\"x\"], 0), \"q\")", env) == {"dmg": 0.0, "avg": 0.0}
    # A list-shaped table passed straight to a damage helper is an error
    with pytest.raises(EvaluationError):
        _eval("dmg(talent.q[\"x\"], \"q\")", env)


def test_context_and_stand_in_interfaces_are_abstract():
    with pytest.raises(TypeError):
        CalcContext()
    with pytest.raises(TypeError):
        StandIn()
    assert isinstance(ZeroStandIn(), StandIn)
    assert isinstance(ZeroCalcContext(), CalcContext)
