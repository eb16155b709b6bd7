"""Loading, overriding and persisting coderace settings."""

import logging
from pathlib import Path
from typing import Any

import pydantic
import toml

from coderace.config.schema import CoderaceConfig, get_config_file
from coderace.errors import ValidationError

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".coderace.toml"


class ConfigManager:
    """Resolves the effective configuration.

    Sources, highest priority first: command-line overrides (``--db``), the
    nearest ``.coderace.toml`` above the working directory, the user file
    ``~/.config/coderace/config.toml``, then built-in defaults.
    """

    _config: CoderaceConfig | None = None

    @classmethod
    def get_config(cls, db_path: str | None = None) -> CoderaceConfig:
        """Get the loaded configuration, with the database path overridden if given."""
        if cls._config is None:
            cls._config = cls.load_config()
        if db_path:
            return cls.with_database(cls._config, db_path)
        return cls._config

    @classmethod
    def load_config(cls) -> CoderaceConfig:
        config_dict: dict[str, Any] = {}

        user_config_file = get_config_file()
        if user_config_file.exists():
            config_dict = cls._deep_merge(config_dict, toml.load(user_config_file))

        project_config_file = cls._find_project_config()
        if project_config_file is not None:
            logger.debug("Using project config %s", project_config_file)
            config_dict = cls._deep_merge(config_dict, toml.load(project_config_file))

        try:
            return CoderaceConfig.model_validate(config_dict)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid configuration: {e}") from e

    @staticmethod
    def with_database(config: CoderaceConfig, db_path: str) -> CoderaceConfig:
        """Copy of ``config`` that stores its data in ``db_path``."""
        return config.model_copy(
            update={"database": config.database.model_copy(update={"path": db_path})}
        )

    @classmethod
    def _find_project_config(cls) -> Path | None:
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_file = parent / PROJECT_CONFIG_NAME
            if config_file.exists():
                return config_file
            if parent == Path.home():
                break
        return None

    @classmethod
    def _deep_merge(
        cls, base: dict[str, Any], override: dict[str, Any]
    ) -> dict[str, Any]:
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def set_value(cls, key_path: str, value: Any) -> CoderaceConfig:
        """Write one ``section.key`` value to the user config file.

        Only the user file is rewritten; project-level settings stay where
        they are.

        Raises:
            ValidationError: if the key is unknown or the value is rejected.
        """
        section, key = cls._split_key(key_path)

        config_file = get_config_file()
        user_dict: dict[str, Any] = toml.load(config_file) if config_file.exists() else {}
        user_dict.setdefault(section, {})[key] = value

        try:
            CoderaceConfig.model_validate(user_dict)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid value for {key_path}: {value!r}") from e

        with open(config_file, "w") as f:
            toml.dump(user_dict, f)
        logger.info("Set %s = %r in %s", key_path, value, config_file)

        cls._config = cls.load_config()
        return cls._config

    @classmethod
    def get_value(cls, key_path: str, config: CoderaceConfig | None = None) -> Any:
        """Read one ``section.key`` value from ``config`` or the loaded configuration.

        Raises:
            ValidationError: if the key is unknown.
        """
        section, key = cls._split_key(key_path)
        config = config or cls.get_config()
        return config.model_dump(by_alias=True)[section][key]

    @staticmethod
    def _split_key(key_path: str) -> tuple[str, str]:
        known = CoderaceConfig.default().model_dump(by_alias=True)
        parts = key_path.split(".")
        if len(parts) != 2 or parts[0] not in known or parts[1] not in known[parts[0]]:
            raise ValidationError(f"Unknown config key: {key_path}")
        return parts[0], parts[1]
