"""
Configuration Management for Confidant

Loads configuration from ~/.confidant/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger("confidant.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".confidant"
CONFIG_PATH = CONFIG_DIR / "config.json"
DATA_DIR = CONFIG_DIR / "data"
DEFAULT_STORE_PATH = DATA_DIR / "knowledge.json"


@dataclass
class LLMConfig:
    """LLM provider configuration shared by detector, activation and answerer"""
    provider: str = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash-exp"

    @property
    def api_key(self) -> str:
        return {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "google": self.google_api_key,
        }.get(self.provider, "")

    @property
    def model(self) -> str:
        return {
            "anthropic": self.anthropic_model,
            "openai": self.openai_model,
            "google": self.google_model,
        }.get(self.provider, "")


@dataclass
class AssistantConfig:
    """Who the assistant is, for activation decisions"""
    name: str = "Confidant"
    address: str = ""
    aliases: List[str] = field(default_factory=list)
    areas_of_responsibility: List[str] = field(default_factory=list)
    expertise_keywords: List[str] = field(default_factory=list)


@dataclass
class ContextConfig:
    """Context assembly limits"""
    max_tokens: int = 46000
    min_confidence: float = 0.0  # facts below this are left out of answers
    recent_window: int = 10  # newest scoped messages kept in full; older ones are summarized


@dataclass
class StorageConfig:
    """Persistence backend selection"""
    backend: str = "memory"  # "memory" or "json"
    path: str = str(DEFAULT_STORE_PATH)


@dataclass
class ConfidantConfig:
    """Main Confidant configuration"""
    llm: LLMConfig = field(default_factory=LLMConfig)
    assistant: AssistantConfig = field(default_factory=AssistantConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    return LLMConfig(
        provider=llm_data.get("provider", "anthropic"),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", "claude-sonnet-4-20250514"),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", "gpt-4o-mini"),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", "gemini-2.0-flash-exp"),
    )


def _parse_assistant_config(data: dict) -> AssistantConfig:
    """Parse assistant section from config dict"""
    assistant_data = data.get("assistant", {})
    return AssistantConfig(
        name=assistant_data.get("name", "Confidant"),
        address=assistant_data.get("address", ""),
        aliases=list(assistant_data.get("aliases", [])),
        areas_of_responsibility=list(assistant_data.get("areas_of_responsibility", [])),
        expertise_keywords=list(assistant_data.get("expertise_keywords", [])),
    )


def _parse_context_config(data: dict) -> ContextConfig:
    """Parse context section from config dict"""
    context_data = data.get("context", {})
    return ContextConfig(
        max_tokens=context_data.get("max_tokens", 46000),
        min_confidence=context_data.get("min_confidence", 0.0),
        recent_window=context_data.get("recent_window", 10),
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage section from config dict"""
    storage_data = data.get("storage", {})
    return StorageConfig(
        backend=storage_data.get("backend", "memory"),
        path=storage_data.get("path", str(DEFAULT_STORE_PATH)),
    )


def load_config() -> ConfidantConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.confidant/config.json)
    3. Default values
    """
    config = ConfidantConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.llm = _parse_llm_config(data)
            config.assistant = _parse_assistant_config(data)
            config.context = _parse_context_config(data)
            config.storage = _parse_storage_config(data)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    # LLM env var overrides (track env-sourced keys so they are never saved)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "CONFIDANT_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    if os.getenv("CONFIDANT_ASSISTANT_ADDRESS"):
        config.assistant.address = os.getenv("CONFIDANT_ASSISTANT_ADDRESS")
    if os.getenv("CONFIDANT_ASSISTANT_NAME"):
        config.assistant.name = os.getenv("CONFIDANT_ASSISTANT_NAME")

    if os.getenv("CONFIDANT_MAX_TOKENS"):
        config.context.max_tokens = int(os.getenv("CONFIDANT_MAX_TOKENS"))

    if os.getenv("CONFIDANT_STORAGE_BACKEND"):
        config.storage.backend = os.getenv("CONFIDANT_STORAGE_BACKEND")
    if os.getenv("CONFIDANT_STORAGE_PATH"):
        config.storage.path = os.getenv("CONFIDANT_STORAGE_PATH")

    return config


def save_config(config: ConfidantConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
    }
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "llm": llm_section,
        "assistant": {
            "name": config.assistant.name,
            "address": config.assistant.address,
            "aliases": config.assistant.aliases,
            "areas_of_responsibility": config.assistant.areas_of_responsibility,
            "expertise_keywords": config.assistant.expertise_keywords,
        },
        "context": {
            "max_tokens": config.context.max_tokens,
            "min_confidence": config.context.min_confidence,
            "recent_window": config.context.recent_window,
        },
        "storage": {
            "backend": config.storage.backend,
            "path": config.storage.path,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
