"""Deterministic planning and scaling-stat inference."""

from calcplan.planning.heuristic import HeuristicPlanner

__all__ = ["HeuristicPlanner"]
