"""
Configuration — loads settings from .diffscribe.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import os

import yaml

from .log_setup import log
from .sanitizer import CommitFormat


_DEFAULTS = {
    "provider": "ollama",
    "model": "qwen2.5-coder:7b",
    "ollama_base_url": "http://localhost:11434/api/generate",
    "stream": True,
    "llm_max_retries": 3,
    "llm_retry_delay": 2.0,
    "request_timeout": 120.0,
    "max_context_chars": 24000,
    "max_diff_lines": 500,
    "max_file_lines": 100,
    "symbol_share": 0.6,
    "stream_buffer_limit": 1024 * 1024,
    "token_queue_size": 64,
    "parser_workers": 4,
    "log_dir": ".diffscribe/logs",
    "format": {
        "include_body": True,
        "include_scope": True,
        "lowercase_subject": True,
    },
}

_ENV_PREFIX = "DIFFSCRIBE_"

# Config file search locations
_CONFIG_FILENAMES = [".diffscribe.yaml", ".diffscribe.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    # Search CWD first, then home directory
    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError) as e:
        log.warning(f"[Config] Ignoring unreadable config file {path}: {e}")
        return {}


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``DIFFSCRIBE_<KEY>``)
    3. .diffscribe.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(key: str, cast=str, section: dict | None = None):
            source = yd if section is None else section
            defaults = _DEFAULTS if section is None else _DEFAULTS["format"]
            env_val = os.getenv(_ENV_PREFIX + key.upper())
            if env_val is not None:
                return cast(env_val)
            yaml_val = source.get(key)
            if yaml_val is not None:
                return cast(yaml_val)
            return defaults[key]

        self.PROVIDER = _get("provider")
        self.MODEL = _get("model")
        self.OLLAMA_BASE_URL = _get("ollama_base_url")
        self.STREAM_RESPONSES = _get("stream", cast=_parse_bool)

        self.LLM_MAX_RETRIES = _get("llm_max_retries", cast=int)
        self.LLM_RETRY_DELAY = _get("llm_retry_delay", cast=float)
        self.REQUEST_TIMEOUT = _get("request_timeout", cast=float)

        # Context budget
        self.MAX_CONTEXT_CHARS = _get("max_context_chars", cast=int)
        self.MAX_DIFF_LINES = _get("max_diff_lines", cast=int)
        self.MAX_FILE_LINES = _get("max_file_lines", cast=int)
        self.SYMBOL_SHARE = _get("symbol_share", cast=float)

        # Streaming
        self.STREAM_BUFFER_LIMIT = _get("stream_buffer_limit", cast=int)
        self.TOKEN_QUEUE_SIZE = _get("token_queue_size", cast=int)

        self.PARSER_WORKERS = _get("parser_workers", cast=int)
        self.LOG_DIR = _get("log_dir")

        # Commit message format
        format_section = yd.get("format", {})
        if not isinstance(format_section, dict):
            format_section = {}
        self.FORMAT = CommitFormat(
            include_body=_get("include_body", cast=_parse_bool, section=format_section),
            include_scope=_get("include_scope", cast=_parse_bool, section=format_section),
            lowercase_subject=_get("lowercase_subject", cast=_parse_bool,
                                   section=format_section),
        )

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
