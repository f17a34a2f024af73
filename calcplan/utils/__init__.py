from .llm_client import LLMClient, ModelClient
from .logger import setup_logger

__all__ = ["LLMClient", "ModelClient", "setup_logger"]
