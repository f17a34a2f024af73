from calcplan.prompting.prompt_builder import PromptBuilder

__all__ = ["PromptBuilder"]
