"""
Confidant Common Module

Shared infrastructure: configuration, LLM access, and error types.
"""

from .config import ConfidantConfig, load_config
from .errors import ConfidantError, PersistenceError, MessageFormatError, DetectorOutputError
from .llm_client import LLMClient, TextGenerator
from .llm_utils import parse_llm_json, parse_llm_json_array

__all__ = [
    "ConfidantConfig",
    "load_config",
    "ConfidantError",
    "PersistenceError",
    "MessageFormatError",
    "DetectorOutputError",
    "LLMClient",
    "TextGenerator",
    "parse_llm_json",
    "parse_llm_json_array",
]
