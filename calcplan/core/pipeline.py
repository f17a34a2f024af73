"""Compile pipeline: heuristic path, model attempts with feedback, fallback."""

from __future__ import annotations

import logging

from calcplan.core.errors import CalcPlanError
from calcplan.core.models import (
    Attempt,
    CacheOptions,
    CompileResult,
    ModelSettings,
    Plan,
    PlanInput,
    Provenance,
)
from calcplan.core.vocabulary import DEFAULT_MAIN_ATTR
from calcplan.llm.cache import ResponseCache
from calcplan.llm.orchestrator import ModelOrchestrator, extract_json_object
from calcplan.planning.heuristic import HeuristicPlanner
from calcplan.prompting.prompt_builder import PromptBuilder
from calcplan.render.renderer import CodeRenderer
from calcplan.sandbox.validator import SandboxValidator
from calcplan.utils.llm_client import ModelClient
from calcplan.validation.eviction import EvictionPolicy
from calcplan.validation.plan_validator import PlanValidator

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = "all model attempts exhausted, heuristic fallback used, last failure = {error}"
UPSTREAM_TAGS = (Provenance.UPSTREAM_DERIVED, Provenance.UPSTREAM_DIRECT)
PROVENANCE_TAGS = frozenset(p.value for p in Provenance)


def heuristic_provenance(provenance: Provenance | str) -> str:
    """Tag for a script the heuristic produced; upstream tags are kept as given."""
    tag = provenance.value if isinstance(provenance, Provenance) else str(provenance)
    if tag in {p.value for p in UPSTREAM_TAGS}:
        return tag
    return Provenance.HEURISTIC.value


class CompilerPipeline:
    """Main orchestration pipeline for calculation plan compilation."""

    def __init__(
        self,
        model_client: ModelClient | None = None,
        cache: ResponseCache | None = None,
        cache_options: CacheOptions | None = None,
        model_settings: ModelSettings | None = None,
        policy: EvictionPolicy | None = None,
    ):
        self.model_settings = model_settings or ModelSettings()
        self.heuristic = HeuristicPlanner()
        self.prompt_builder = PromptBuilder()
        self.validator = PlanValidator(policy=policy)
        self.renderer = CodeRenderer()
        self.sandbox = SandboxValidator()
        self.orchestrator = (
            ModelOrchestrator(
                model_client,
                cache=cache,
                options=cache_options,
                temperature=self.model_settings.temperature,
                max_tokens=self.model_settings.max_tokens,
            )
            if model_client is not None
            else None
        )

    def compile(self, input: PlanInput, provenance: Provenance | str = Provenance.MODEL_ASSISTED) -> CompileResult:
        """Compile one input; always returns a script."""
        if self.orchestrator is None:
            logger.info(f"Compiling {input.name} ({input.game.value}) with the heuristic planner")
            return self._compile_heuristic(input, provenance)

        tag = provenance.value if isinstance(provenance, Provenance) else str(provenance)
        attempt = Attempt(number=1, max_attempts=self.model_settings.max_attempts)
        last_error = ""

        while not attempt.exhausted:
            logger.info(f"Attempt {attempt.number}/{attempt.max_attempts} for {input.name} ({input.game.value})")
            try:
                script = self._model_attempt(input, attempt, tag)
            except CalcPlanError as e:
                last_error = str(e)
            except Exception as e:
                # Transport failures from the model client count as a failed attempt
                last_error = f"model request failed: {type(e).__name__}: {e}"
            else:
                logger.info(f"Attempt {attempt.number} succeeded for {input.name}")
                return CompileResult(
                    script=script,
                    used_model=True,
                    provenance=Provenance(tag) if tag in PROVENANCE_TAGS else Provenance.MODEL_ASSISTED,
                    attempts=attempt.number,
                )
            logger.warning(f"Attempt {attempt.number} failed for {input.name}: {last_error}")
            attempt = attempt.next(last_error)

        logger.warning(f"Model attempts exhausted for {input.name}, falling back to heuristic")
        fallback = self._compile_heuristic(input, provenance)
        error = EXHAUSTED_MESSAGE.format(error=last_error)
        if fallback.error:
            error = f"{error}; heuristic: {fallback.error}"
        return fallback.model_copy(update={"error": error, "attempts": attempt.max_attempts})

    def _model_attempt(self, input: PlanInput, attempt: Attempt, tag: str) -> str:
        messages = self.prompt_builder.build(input, attempt)

        def accept(text: str) -> str:
            raw = extract_json_object(text)
            plan = self.validator.validate(raw, input)
            script = self.renderer.render(plan, input, provenance=tag)
            self.sandbox.validate(script)
            return script

        return self.orchestrator.request(messages, accept)

    def _compile_heuristic(self, input: PlanInput, provenance: Provenance | str) -> CompileResult:
        tag = heuristic_provenance(provenance)
        plan = self.heuristic.plan(input)
        error = None if plan.details else "heuristic planner found no damage table"

        try:
            plan = self.validator.refine(plan, input)
        except CalcPlanError as e:
            error = str(e)
            logger.warning(f"Heuristic plan refinement failed for {input.name}: {e}")

        try:
            script = self.renderer.render(plan, input, provenance=tag)
        except CalcPlanError as e:
            error = str(e)
            logger.warning(f"Heuristic plan could not be rendered for {input.name}: {e}")
            script = self.renderer.render(Plan(main_attr_list=DEFAULT_MAIN_ATTR), input, provenance=tag)

        try:
            self.sandbox.validate(script)
        except CalcPlanError as e:
            # Returned anyway, with the failure recorded
            error = f"heuristic script failed sandbox: {e}"
            logger.warning(f"{error} ({input.name})")

        return CompileResult(script=script, used_model=False, error=error, provenance=Provenance(tag), attempts=0)


def compile_plan(
    model_client: ModelClient | None,
    input: PlanInput,
    cache_options: CacheOptions | None = None,
    provenance: Provenance | str = Provenance.MODEL_ASSISTED,
    cache: ResponseCache | None = None,
    model_settings: ModelSettings | None = None,
) -> CompileResult:
    """Compile a PlanInput into script text; never raises for a valid input."""
    pipeline = CompilerPipeline(
        model_client=model_client,
        cache=cache,
        cache_options=cache_options,
        model_settings=model_settings,
    )
    return pipeline.compile(input, provenance=provenance)
