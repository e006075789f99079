"""
Configuration for Readwise Triage.

Values come from built-in defaults, then the dotenv-style config file, then the
process environment (a ``.env`` in the working directory is loaded into the
environment first). Later sources win.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values, load_dotenv, set_key

logger = logging.getLogger(__name__)

APP_DIR_NAME = "readwise-triage"
CONFIG_FILENAME = "config.env"
STORE_FILENAME = "triage.json"

EXAMPLE_CONFIG = """# Readwise Triage Configuration
# Get your token at: https://readwise.io/access_token
# Environment variables override every value in this file.

# Required: Your Readwise API token
READWISE_TOKEN=your_token_here

# Optional: LLM auto-triage (perplexity, openai, anthropic, ollama, or a custom name)
LLM_PROVIDER=perplexity
LLM_API_KEY=your_api_key_here
# LLM_MODEL=sonar
# LLM_BASE_URL=https://api.perplexity.ai/chat/completions
# LLM_API_FORMAT=openai

# Optional: Default number of days to fetch (default: 7)
DEFAULT_DAYS_AGO=7

# Optional: Reader location to triage (new or feed)
READWISE_LOCATION=new

# Optional: Color theme (default, catppuccin, dracula, nord, gruvbox)
THEME=default
"""


@dataclass
class Config:
    readwise_token: str = ""
    llm_provider: str = ""
    llm_api_key: str = ""
    llm_model: str = ""
    llm_base_url: str = ""
    llm_api_format: str = ""
    default_days_ago: int = 7
    location: str = "new"
    theme: str = "default"
    triage_store_path: str = ""


def config_dir() -> str:
    """~/.config/readwise-triage, created on demand."""
    path = Path.home() / ".config" / APP_DIR_NAME
    path.mkdir(parents=True, exist_ok=True)
    return str(path)


def get_config_path() -> str:
    override = os.getenv("READWISE_TRIAGE_CONFIG")
    if override:
        return override
    return os.path.join(str(Path.home()), ".config", APP_DIR_NAME, CONFIG_FILENAME)


def default_store_path() -> str:
    return os.path.join(config_dir(), STORE_FILENAME)


def _apply(cfg: Config, values: Dict[str, Optional[str]]) -> None:
    def value(key):
        val = values.get(key)
        return val.strip() if val else ""

    if value("READWISE_TOKEN"):
        cfg.readwise_token = value("READWISE_TOKEN")
    if value("LLM_PROVIDER"):
        cfg.llm_provider = value("LLM_PROVIDER")
    if value("LLM_API_KEY"):
        cfg.llm_api_key = value("LLM_API_KEY")
    elif value("PERPLEXITY_API_KEY") and not cfg.llm_api_key:
        cfg.llm_api_key = value("PERPLEXITY_API_KEY")
        if not cfg.llm_provider:
            cfg.llm_provider = "perplexity"
    if value("LLM_MODEL"):
        cfg.llm_model = value("LLM_MODEL")
    if value("LLM_BASE_URL"):
        cfg.llm_base_url = value("LLM_BASE_URL")
    if value("LLM_API_FORMAT"):
        cfg.llm_api_format = value("LLM_API_FORMAT")
    if value("DEFAULT_DAYS_AGO"):
        try:
            cfg.default_days_ago = int(value("DEFAULT_DAYS_AGO"))
        except ValueError:
            logger.warning(
                f"Ignoring DEFAULT_DAYS_AGO={value('DEFAULT_DAYS_AGO')!r}: not an integer"
            )
    if value("READWISE_LOCATION"):
        cfg.location = value("READWISE_LOCATION")
    if value("THEME"):
        cfg.theme = value("THEME")
    if value("TRIAGE_STORE_PATH"):
        cfg.triage_store_path = os.path.expanduser(value("TRIAGE_STORE_PATH"))


def load_config(path: Optional[str] = None) -> Config:
    """
    Build the effective configuration.

    Args:
        path: Config file to read instead of the default location.

    Returns:
        Config with environment values taking precedence over the file.
    """
    load_dotenv()

    cfg = Config()
    config_path = path or get_config_path()
    if os.path.exists(config_path):
        logger.debug(f"Reading config file {config_path}")
        _apply(cfg, dotenv_values(config_path))

    _apply(cfg, dict(os.environ))

    if not cfg.triage_store_path:
        cfg.triage_store_path = default_store_path()
    return cfg


def save_example_config(path: Optional[str] = None) -> Optional[str]:
    """Write the commented example config unless a file is already there."""
    config_path = path or os.path.join(config_dir(), CONFIG_FILENAME)
    if os.path.exists(config_path):
        return None
    os.makedirs(os.path.dirname(os.path.abspath(config_path)), exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(EXAMPLE_CONFIG)
    os.chmod(config_path, 0o600)
    return config_path


def save_config(cfg: Config, path: Optional[str] = None) -> str:
    """
    Persist the non-sensitive preferences. Tokens and API keys are never
    written; they belong in the environment.
    """
    config_path = path or os.path.join(config_dir(), CONFIG_FILENAME)
    os.makedirs(os.path.dirname(os.path.abspath(config_path)), exist_ok=True)
    Path(config_path).touch(mode=0o600, exist_ok=True)
    set_key(config_path, "DEFAULT_DAYS_AGO", str(cfg.default_days_ago), quote_mode="never")
    set_key(config_path, "READWISE_LOCATION", cfg.location, quote_mode="never")
    set_key(config_path, "THEME", cfg.theme, quote_mode="never")
    return config_path
