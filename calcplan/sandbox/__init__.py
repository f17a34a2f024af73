"""Script language and the sandbox that checks rendered scripts."""

from calcplan.sandbox.interpreter import Interpreter
from calcplan.sandbox.parser import parse_expression, parse_script
from calcplan.sandbox.validator import SandboxValidator, load_script

__all__ = ["SandboxValidator", "Interpreter", "load_script", "parse_script", "parse_expression"]
