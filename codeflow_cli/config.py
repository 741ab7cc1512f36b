"""Configuration paths and engine defaults for local CodeFlow memory."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("CODEFLOW_HOME", str(Path.home() / ".codeflow"))).expanduser()
MEMORY_DIR = BASE_DIR / "memory"
STATE_FILE = BASE_DIR / "state.json"

# Load configuration from TOML file (BASE_DIR must exist before this import)
from .config_manager import load_config, load_engine_config  # noqa: E402

_toml_config = load_config()
_engine_config = load_engine_config()

# LLM provider configuration, loaded from ~/.codeflow/config.toml (set via `cf set-llm`)
LLM_PROVIDER = _toml_config.get("provider", "ollama")
LLM_API_KEY = _toml_config.get("api_key", "")
LLM_MODEL = _toml_config.get("model", "qwen2.5-coder:7b")
# Empty means the provider default endpoint
LLM_ENDPOINT = _toml_config.get("endpoint", "")

# Flow tracing stops descending once this many calls deep
DEFAULT_MAX_DEPTH = int(_engine_config.get("max_depth", 15))
DEFAULT_READY_LIMIT = int(_engine_config.get("ready_limit", 20))

# Aspect keys are plain lowercase identifiers, e.g. "purpose" or "domain"
ASPECT_KEY_PATTERN = r"^[a-z][a-z0-9_-]*$"


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    MEMORY_DIR.mkdir(parents=True, exist_ok=True)
    BASE_DIR.mkdir(parents=True, exist_ok=True)
