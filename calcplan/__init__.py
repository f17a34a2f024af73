"""Ability calculation plan compiler."""

from calcplan.core.models import CompileResult, PlanInput, Provenance
from calcplan.core.pipeline import CompilerPipeline, compile_plan

__all__ = ["compile_plan", "CompilerPipeline", "CompileResult", "PlanInput", "Provenance"]
