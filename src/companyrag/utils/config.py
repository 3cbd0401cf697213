"""
Configuration utilities.
"""

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml

from pydantic import BaseModel

ENV_PREFIX = "COMPANYRAG_"


class Config(BaseModel):
    """Base configuration class."""

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")


class Settings(Config):
    """Settings for the company index service."""
    # Storage
    storage_dir: str = "./indexes"
    storage_backend: Literal["local", "memory", "redis"] = "local"
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "companyrag:"

    # Processing
    chunk_size: int = 1000
    chunk_overlap: int = 200

    # Embeddings
    embedding_provider: Literal["openai", "local", "fake"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int | None = None

    # Answer generation
    answer_provider: Literal["openai", "extractive"] = "openai"
    answer_model: str = "gpt-4o-mini"
    openai_api_key: str | None = None
    openai_base_url: str | None = None

    # Retrieval / fetching
    top_k: int = 3
    request_timeout: float = 30.0

    log_level: str = "INFO"

    def with_env_overrides(self, environ: dict[str, str] | None = None) -> "Settings":
        """Return a copy with ``COMPANYRAG_*`` environment variables applied.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            New Settings instance
        """
        environ = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name in type(self).model_fields:
            key = f"{ENV_PREFIX}{name.upper()}"
            if key in environ:
                overrides[name] = environ[key]

        if not overrides:
            return self
        return type(self)(**{**self.model_dump(), **overrides})


def load_settings(path: str | Path = "companyrag.yaml") -> Settings:
    """
    Load service settings from file, then apply environment overrides.

    Args:
        path: Path to config file

    Returns:
        Settings instance
    """
    path = Path(path)

    if not path.exists():
        settings = Settings()
    else:
        settings = Settings.from_file(path)

    return settings.with_env_overrides()
