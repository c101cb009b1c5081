"""
Configuration module for the Hivemoot Queen governance bot.

Process settings come from the environment via Pydantic Settings;
governance rules come from each repository's `.github/hivemoot.yml`.
"""

from .settings import AppSettings, get_settings
from .repo_config import RepoConfig, get_default_config, load_repo_config

__all__ = [
    "AppSettings",
    "get_settings",
    "RepoConfig",
    "get_default_config",
    "load_repo_config",
]
