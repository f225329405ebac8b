"""
Application configuration

Defaults come from LABELER_* environment variables (a .env file in the
working directory is honored). A YAML file can override them for a single
run via LabelerSettings.from_yaml().
"""
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from labeler.core.errors import ConfigError

load_dotenv()

# Base paths
BASE_DIR = Path(__file__).parent.parent.parent
DEFAULT_DB_PATH = os.getenv("LABELER_DB_PATH", str(BASE_DIR / "labeler_db.sqlite"))

# Load policy: replace stored labels that share a name with a loaded document
FORCE_OVERWRITE = os.getenv("LABELER_FORCE_OVERWRITE", "false").lower() == "true"

# Regex bounds
MAX_SIGNATURE_LENGTH = int(os.getenv("LABELER_MAX_SIGNATURE_LENGTH", "1024"))
MAX_MATCH_TEXT_LENGTH = int(os.getenv("LABELER_MAX_MATCH_TEXT_LENGTH", "65536"))

# Match pass parallelism (1 = sequential)
MATCH_WORKERS = int(os.getenv("LABELER_MATCH_WORKERS", "1"))

LOG_LEVEL = os.getenv("LABELER_LOG_LEVEL", "INFO")
HISTORY_FILE = os.getenv("LABELER_HISTORY_FILE", ".cli_history.txt")


@dataclass(frozen=True)
class LabelerSettings:
    """Tunables shared by the repository, matcher and console."""
    db_path: str = DEFAULT_DB_PATH
    force_overwrite: bool = FORCE_OVERWRITE
    max_signature_length: int = MAX_SIGNATURE_LENGTH
    max_match_text_length: int = MAX_MATCH_TEXT_LENGTH
    match_workers: int = MATCH_WORKERS
    log_level: str = LOG_LEVEL
    history_file: Optional[str] = HISTORY_FILE

    def __post_init__(self):
        if self.max_signature_length < 1:
            raise ConfigError("max_signature_length must be positive")
        if self.max_match_text_length < 1:
            raise ConfigError("max_match_text_length must be positive")
        if self.match_workers < 1:
            raise ConfigError("match_workers must be at least 1")

    @classmethod
    def from_env(cls) -> "LabelerSettings":
        """Settings built from the LABELER_* environment variables."""
        return cls(
            db_path=os.getenv("LABELER_DB_PATH", DEFAULT_DB_PATH),
            force_overwrite=os.getenv("LABELER_FORCE_OVERWRITE", "false").lower() == "true",
            max_signature_length=int(os.getenv("LABELER_MAX_SIGNATURE_LENGTH", str(MAX_SIGNATURE_LENGTH))),
            max_match_text_length=int(os.getenv("LABELER_MAX_MATCH_TEXT_LENGTH", str(MAX_MATCH_TEXT_LENGTH))),
            match_workers=int(os.getenv("LABELER_MATCH_WORKERS", str(MATCH_WORKERS))),
            log_level=os.getenv("LABELER_LOG_LEVEL", LOG_LEVEL),
            history_file=os.getenv("LABELER_HISTORY_FILE", HISTORY_FILE),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "LabelerSettings":
        """
        Overlay a YAML mapping on the environment defaults.

        Args:
            path: YAML file whose keys are LabelerSettings field names

        Raises:
            ConfigError: file unreadable, not a mapping, or unknown keys
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot read config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown config key(s) in {path}: {', '.join(sorted(unknown))}")

        try:
            return replace(cls.from_env(), **data)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid config {path}: {e}") from e
