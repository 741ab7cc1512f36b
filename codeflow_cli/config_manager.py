"""Configuration manager for CodeFlow CLI using TOML files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import toml

CONFIG_FILENAME = "config.toml"


# Default configurations for each provider
DEFAULT_CONFIGS = {
    "ollama": {
        "provider": "ollama",
        "model": "qwen2.5-coder:7b",
        "endpoint": "http://127.0.0.1:11434/api/generate",
    },
    "groq": {
        "provider": "groq",
        "model": "llama-3.3-70b-versatile",
        "api_key": "",
    },
    "openai": {
        "provider": "openai",
        "model": "gpt-4",
        "api_key": "",
    },
    "anthropic": {
        "provider": "anthropic",
        "model": "claude-3-5-sonnet-20241022",
        "api_key": "",
    },
}

DEFAULT_ENGINE_CONFIG = {
    "max_depth": 15,
    "ready_limit": 20,
}


def config_file() -> Path:
    # Resolved lazily: config.py imports this module while it is still loading
    from .config import BASE_DIR

    return BASE_DIR / CONFIG_FILENAME


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    path = config_file()
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError):
        return {}


def load_config() -> Dict[str, Any]:
    """Load the ``[llm]`` section.

    Returns:
        Configuration dictionary with provider settings.
        Falls back to Ollama defaults if the file or section is missing.
    """
    return load_full_config().get("llm", DEFAULT_CONFIGS["ollama"].copy())


def load_engine_config() -> Dict[str, Any]:
    """Load the ``[engine]`` section merged over the engine defaults."""
    merged = DEFAULT_ENGINE_CONFIG.copy()
    merged.update(load_full_config().get("engine", {}))
    return merged


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    path = config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError:
        return False


def save_config(provider: str, model: str, api_key: str = "", endpoint: str = "") -> bool:
    """Save LLM configuration to TOML file.

    Preserves other sections (e.g. ``[engine]``) in the file.

    Args:
        provider: Provider name (ollama, groq, openai, anthropic)
        model: Model name
        api_key: API key for cloud providers
        endpoint: Custom endpoint (for Ollama or OpenAI-compatible gateways)

    Returns:
        True if saved successfully, False otherwise
    """
    config = load_full_config()

    config["llm"] = {
        "provider": provider,
        "model": model,
    }
    if api_key:
        config["llm"]["api_key"] = api_key
    if endpoint:
        config["llm"]["endpoint"] = endpoint

    return _save_full_config(config)


def get_provider_config(provider: str) -> Dict[str, Any]:
    """Get default configuration for a specific provider."""
    return DEFAULT_CONFIGS.get(provider, DEFAULT_CONFIGS["ollama"]).copy()
