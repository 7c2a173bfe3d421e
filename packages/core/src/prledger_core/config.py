import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "model": "anthropic",
    "max_chars_per_file": 20000,
    "guidelines": None,  # None = use built-in default; set to a path string to override
    "exclude": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
    "test_paths": [],  # extra project-level test markers, same syntax as exclude
    "match_threshold": 0.8,  # context overlap needed to treat a moved finding as the same open issue
    "context_radius": 3,  # lines captured on each side of a finding
    "collaborator_timeout": 120,  # seconds per reviewer call
    "review_draft_prs": False,
    "store": "noop",
    "store_path": ".prledger.db",
    "lock_dir": ".prledger-locks",
    "lock_timeout": 30,  # seconds to wait for another run on the same PR
}

_LIST_KEYS = ("exclude", "test_paths")

BUILTIN_GUIDELINES_DIR = Path(__file__).parent / "guidelines"
_BUILTIN_DEFAULT = BUILTIN_GUIDELINES_DIR / "default.md"


def load_config(config_path: str = ".prledger.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prledger.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG}
    for key in _LIST_KEYS:
        config[key] = list(DEFAULT_CONFIG[key])

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping, got {type(file_config).__name__}")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    threshold = config.get("match_threshold")
    if not isinstance(threshold, (int, float)) or not 0.0 <= threshold <= 1.0:
        raise ValueError(f"match_threshold must be a number between 0 and 1, got {threshold!r}")

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")

    return config


def load_guidelines(config: dict) -> str:
    """
    Load the review ruleset.

    If ``guidelines`` is set in config, loads from that path (relative to cwd).
    Otherwise falls back to the built-in default.
    """
    custom_path = config.get("guidelines")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"Guidelines file not found: {custom_path}")
        return p.read_text()

    if _BUILTIN_DEFAULT.exists():
        return _BUILTIN_DEFAULT.read_text()

    raise FileNotFoundError("No guidelines configured and built-in default is missing.")
