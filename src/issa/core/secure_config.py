"""
Configuration for ISSA.
"""

import copy
import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, cast

from issa.core.exceptions import ConfigurationError
from issa.core.logging import logger


# Hugging Face hub syntax: "name" or "owner/name"
_MODEL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][\w.-]*(/[\w.-]+)?$")


class ConfigValidator:
    """
    Configuration validator with rules.

    Validations:
    1. Strategy weights and thresholds inside [0, 1]
    2. Cache bounds
    3. Embedding model name and device
    """

    def validate_config(self, config: Dict[str, Any]) -> None:
        """
        Validate complete configuration.

        Raises:
            ConfigurationError: On the first invalid value found
        """
        search = config.get("search", {})

        for key in ("min_relevance", "fuzzy_threshold"):
            value = search.get(key)
            if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                logger.error("Invalid search threshold", key=key, value=value)
                raise ConfigurationError(f"search.{key} must be a number in [0, 1], got {value!r}")

        for name, strategy in search.get("strategies", {}).items():
            weight = strategy.get("weight")
            if not isinstance(weight, (int, float)) or not 0.0 <= weight <= 1.0:
                logger.error("Invalid strategy weight", strategy=name, weight=weight)
                raise ConfigurationError(
                    f"search.strategies.{name}.weight must be in [0, 1], got {weight!r}"
                )

        for key in ("max_results", "lexical_limit", "max_keywords", "max_index_terms"):
            value = search.get(key)
            if not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"search.{key} must be a non-negative integer")

        rrf_k = search.get("rrf_k")
        if not isinstance(rrf_k, (int, float)) or rrf_k <= 0:
            raise ConfigurationError(f"search.rrf_k must be positive, got {rrf_k!r}")

        cache = config.get("cache", {})
        if not isinstance(cache.get("ttl_seconds"), (int, float)) or cache["ttl_seconds"] < 1:
            raise ConfigurationError("cache.ttl_seconds must be >= 1")
        if not isinstance(cache.get("max_size"), int) or cache["max_size"] < 1:
            raise ConfigurationError("cache.max_size must be >= 1")

        slow_ms = config.get("logging", {}).get("slow_query_ms")
        if slow_ms is not None and (not isinstance(slow_ms, (int, float)) or slow_ms < 0):
            raise ConfigurationError(f"logging.slow_query_ms must be >= 0, got {slow_ms!r}")

        embeddings = config.get("embeddings", {})
        model_name = str(embeddings.get("model", ""))
        if not _MODEL_NAME_PATTERN.match(model_name):
            logger.error("Invalid embedding model name", model=model_name)
            error = ConfigurationError(f"Invalid embedding model name: {model_name!r}")
            error.add_suggestion("Use the hub syntax 'owner/model-name'")
            raise error

        device = embeddings.get("device", "auto")
        if device not in ("auto", "cpu", "cuda"):
            logger.error("Invalid embeddings device", device=device)
            raise ConfigurationError(
                f"Invalid embeddings.device: {device}. Must be one of: auto, cuda, cpu"
            )


class Settings:
    """
    Main system configuration.

    Load order:
    1. Default values
    2. .issa file (YAML)
    3. Environment variables
    4. Explicit overrides (tests, CLI flags)
    """

    ENV_OVERRIDES = {
        "ISSA_DB_PATH": ("database", "path"),
        "ISSA_LOG_LEVEL": ("logging", "level"),
        "ISSA_EMBEDDING_MODEL": ("embeddings", "model"),
        "ISSA_EMBEDDING_DEVICE": ("embeddings", "device"),
    }

    def __init__(
        self,
        config_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._explicit_path = Path(config_path) if config_path else None
        self.config = self._load_config(overrides)
        self.validator = ConfigValidator()
        self.validator.validate_config(self.config)
        source = self._find_config_file()
        logger.info("Settings initialized", config_source=str(source) if source else "defaults")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "version": "1.0",
            "database": {"path": "./data/issa.db"},
            "logging": {
                "level": "INFO",
                "file": "issa.log",
                "debug_mode": False,
                "slow_query_ms": None,
            },
            "cache": {
                "enabled": True,
                "max_size": 1000,
                "ttl_seconds": 3600,
            },
            "search": {
                "max_results": 5,
                "min_relevance": 0.3,
                "fuzzy_threshold": 0.7,
                "lexical_limit": 10,
                "max_keywords": 10,
                "max_index_terms": 10,
                "max_fallback_patterns": 10,
                "synonyms_per_keyword": 3,
                "rrf_k": 60,
                "strategies": {
                    "keyword": {"enabled": True, "weight": 0.4},
                    "fuzzy": {"enabled": True, "weight": 0.3},
                    "intent_based": {"enabled": True, "weight": 0.3},
                },
            },
            "embeddings": {
                "enabled": False,
                "model": "sentence-transformers/distiluse-base-multilingual-cased-v2",
                "device": "auto",
                "max_length": 256,
            },
            "lexicon": {"path": None},
        }

    def _find_config_file(self) -> Optional[Path]:
        """Find the .issa configuration file (explicit path first, then cwd)."""
        if self._explicit_path is not None:
            if not self._explicit_path.exists():
                raise ConfigurationError(f"Configuration file not found: {self._explicit_path}")
            return self._explicit_path

        local_config = Path.cwd() / ".issa"
        if local_config.is_file():
            return local_config
        return None

    def _load_config(self, overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Load configuration in priority order."""
        config = self._get_default_config()

        config_path = self._find_config_file()
        if config_path is not None:
            try:
                with open(config_path, encoding='utf-8') as f:
                    file_config = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.error(
                    "Error reading configuration file", file=str(config_path), error=str(e)
                )
                raise ConfigurationError(f"Error reading configuration file: {e}", cause=e)
            if file_config:
                if not isinstance(file_config, dict):
                    raise ConfigurationError(f"{config_path} must contain a YAML mapping")
                self._deep_merge(config, file_config)
                logger.debug("Config loaded from file", keys=list(file_config.keys()))

        for env_key, path_tuple in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_key)
            if env_value:
                self._set_nested(config, path_tuple, env_value)

        if overrides:
            self._deep_merge(config, copy.deepcopy(overrides))

        return config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> None:
        """Deep merge of dictionaries."""
        for key, value in update.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(cast(Dict[str, Any], base[key]), cast(Dict[str, Any], value))
            else:
                base[key] = value

    def _set_nested(self, data: Dict[str, Any], path: tuple[str, ...], value: Any) -> None:
        """Set value at nested path."""
        current = data
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value with support for dotted paths ("search.rrf_k")."""
        if "." in key:
            current: Any = self.config
            for part in key.split("."):
                if isinstance(current, dict) and part in current:
                    current = current[part]
                else:
                    return default
            return current
        return self.config.get(key, default)

    def require(self, key: str) -> Any:
        """
        Get required value or raise exception.

        Useful for critical configs that must exist.
        """
        value = self.get(key)
        if value is None:
            logger.error("Required config missing", key=key)
            raise ConfigurationError(f"Missing required config: {key}")
        return value
