import json

from calcplan.core.models import Attempt, Game, PlanInput
from calcplan.prompting.prompt_builder import PromptBuilder


def test_first_attempt_has_system_and_task(gs_input):
    messages = PromptBuilder().build(gs_input)
    assert [m["role"] for m in messages] == ["system", "user"]
    task = messages[1]["content"]
    assert "Test Pyro" in task
    assert "Only these talent keys may be used: a,e,q" in task
    # Allowed tables are listed verbatim
    assert json.dumps(gs_input.tables["e"], ensure_ascii=False) in task


def test_retry_appends_specific_feedback(gs_input):
    attempt = Attempt(number=2, max_attempts=3, last_error="no valid details | rejected tables: e:'Nonexistent'")
    messages = PromptBuilder().build(gs_input, attempt)
    assert len(messages) == 3
    assert "Nonexistent" in messages[2]["content"]
    assert messages[2]["content"].startswith("Your previous plan was rejected:")
    assert PromptBuilder.STRICT_JSON_INSTRUCTIONS not in [m["content"] for m in messages]


def test_final_attempt_adds_strict_json_instructions(gs_input):
    attempt = Attempt(number=3, max_attempts=3, last_error="mainAttr is empty")
    messages = PromptBuilder().build(gs_input, attempt)
    assert len(messages) == 4
    assert "mainAttr is empty" in messages[2]["content"]
    assert messages[3]["content"] == PromptBuilder.STRICT_JSON_INSTRUCTIONS


def test_single_attempt_budget_never_adds_escalation(gs_input):
    messages = PromptBuilder().build(gs_input, Attempt(number=1, max_attempts=1))
    assert len(messages) == 2


def test_oversized_prompt_falls_back_to_compact():
    long_desc = "造成伤害。" * 400
    plan_input = PlanInput(
        game=Game.SR,
        name="Verbose",
        tables={"e": [f"技能伤害{i}" for i in range(200)]},
        talent_desc={"e": long_desc, "q": long_desc},
        buff_hints=[long_desc] * 60,
    )
    builder = PromptBuilder()
    task = builder.render_task(plan_input)
    assert "Allowed tables (JSON)" in task
    assert "Rules:" not in task
    assert "技能伤害199" in task


def test_sr_prompt_lists_sr_vocabulary(sr_blast_input):
    task = PromptBuilder().render_task(sr_blast_input)
    assert "Honkai: Star Rail" in task
    assert "windShear" in task
    assert "superBreak" in task
