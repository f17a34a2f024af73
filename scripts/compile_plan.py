#!/usr/bin/env python3
"""CLI script for compiling one character input into a calculation script.

Usage Examples:

    # Heuristic only, no model calls
    ./scripts/compile_plan.py --input config/inputs/example_gs.yaml --no-model

    # Model-assisted with settings from config, writing the script to a file
    ./scripts/compile_plan.py --input config/inputs/example_gs.yaml \
        --config config/compiler.yaml --output out/example_gs.js

Arguments:
    --input: Path to a PlanInput YAML/JSON file (required)
    --config: Path to compiler settings YAML (optional)
    --output: Where to write the script (optional, prints to stdout otherwise;
        the run summary always goes to stderr)
    --no-model: Skip the model path even if enabled in config
    --provenance: createdBy tag written into the script
    --log-level: Logging level (default: settings log_level)

Note:
    The model API key is read from the variable named by model.api_key_env
    (default CALCPLAN_LLM_API_KEY), falling back to OPENAI_API_KEY. A .env file is loaded.
"""

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

from calcplan.core.config_loader import ConfigLoader
from calcplan.core.models import Provenance
from calcplan.core.pipeline import CompilerPipeline
from calcplan.llm.cache import DiskResponseCache
from calcplan.utils.llm_client import LLMClient
from calcplan.utils.logger import setup_logger


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Compile an ability calculation script")
    parser.add_argument("--input", type=Path, required=True, help="Path to PlanInput file")
    parser.add_argument("--config", type=Path, help="Path to compiler settings file")
    parser.add_argument("--output", type=Path, help="Output script path")
    parser.add_argument("--no-model", action="store_true", help="Use the heuristic planner only")
    parser.add_argument(
        "--provenance",
        default=Provenance.MODEL_ASSISTED.value,
        choices=[p.value for p in Provenance],
        help="createdBy tag",
    )
    parser.add_argument("--log-level", help="Logging level")
    args = parser.parse_args()

    load_dotenv()

    settings = ConfigLoader.load_settings(args.config)
    setup_logger("calcplan", level=args.log_level or settings.log_level)
    logger = setup_logger("compile_plan", level=args.log_level or settings.log_level)

    plan_input = ConfigLoader.load_input(args.input)
    print(f"Character: {plan_input.name} ({plan_input.game.value})", file=sys.stderr)
    print(f"Tables: {sum(len(v) for v in plan_input.tables.values())} across {len(plan_input.tables)} talents", file=sys.stderr)

    client = None
    if settings.model.enabled and not args.no_model:
        client = LLMClient.from_settings(settings.model)
        print(f"Model: {settings.model.model} (max {settings.model.max_attempts} attempts)", file=sys.stderr)
    else:
        print("Model: disabled, heuristic planner only", file=sys.stderr)

    cache = None
    if settings.cache.enabled and settings.cache.root_dir:
        cache = DiskResponseCache(settings.cache.root_dir)
        logger.info(f"Response cache at {settings.cache.root_dir}")

    pipeline = CompilerPipeline(
        model_client=client,
        cache=cache,
        cache_options=settings.cache,
        model_settings=settings.model,
    )
    result = pipeline.compile(plan_input, provenance=args.provenance)

    print("\nResult:", file=sys.stderr)
    print(f"  Used model: {result.used_model}", file=sys.stderr)
    print(f"  Attempts: {result.attempts}", file=sys.stderr)
    print(f"  Provenance: {result.provenance.value}", file=sys.stderr)
    if result.error:
        print(f"  Error: {result.error}", file=sys.stderr)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(result.script, encoding="utf-8")
        print(f"\nSaved script to {args.output}", file=sys.stderr)
    else:
        print(result.script)


if __name__ == "__main__":
    main()
