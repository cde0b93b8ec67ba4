# utils/config.py
"""Configuration loader with YAML backend."""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Type, TypeVar, cast
from omegaconf import OmegaConf
from utils.logger import Logger
from utils.settings import PublisherCfg, SensorCfg, paths

DEFAULT_CONFIG_PATH = paths.CONF_DIR / "camera.yaml"

T = TypeVar("T")


class ConfigLoader:
    """Strategy interface for config loading."""

    def load(self, filename: str) -> Dict[str, Any]:
        raise NotImplementedError


class YamlConfigLoader(ConfigLoader):
    def load(self, filename: str) -> Dict[str, Any]:
        """Load YAML file and return plain ``dict`` data."""

        cfg = OmegaConf.load(filename)
        return cast(Dict[str, Any], OmegaConf.to_container(cfg, resolve=True))


class DictConfigLoader(ConfigLoader):
    """Serve an in-memory mapping instead of a file (tests, embedding)."""

    def __init__(self, data: Dict[str, Any]) -> None:
        self.data = data

    def load(self, filename: str) -> Dict[str, Any]:
        return dict(self.data)


class Config:
    _data: Dict[str, Any] | None = None
    _loader: ConfigLoader = YamlConfigLoader()
    _logger = Logger.get_logger("utils.config")

    @classmethod
    def load(
        cls, filename: Path | str = DEFAULT_CONFIG_PATH, force_reload: bool = False
    ) -> None:
        """Load configuration from ``filename`` unless already loaded."""

        if cls._data is not None and not force_reload:
            return

        try:
            cls._data = cls._loader.load(str(filename)) or {}
            cls._logger.info(f"Config loaded from {filename}")
            logging_cfg = cls._data.get("logging")
            if logging_cfg:
                Logger.configure(
                    level=logging_cfg.get("level", "INFO"),
                    log_dir=logging_cfg.get("log_dir", ".logs"),
                    json_format=logging_cfg.get("json", True),
                    to_file=logging_cfg.get("to_file", True),
                )
        except Exception as e:
            cls._logger.error(f"Failed to load config: {e}")
            raise

    @classmethod
    def get(cls, path: str, default: Any | None = None) -> Any:
        """Retrieve value from dotted ``path`` or return ``default``."""
        if cls._data is None:
            cls.load()
        value = cls._data
        for key in path.split("."):
            if not isinstance(value, dict):
                cls._logger.warning(f"Key {key} not found in path {path}")
                return default
            value = value.get(key, None)
            if value is None:
                cls._logger.warning(f"Key {key} not found in path {path}")
                return default
        return value

    @classmethod
    def section(cls, name: str, schema: Type[T]) -> T:
        """
        Merge section ``name`` over the dataclass defaults of ``schema``.

        OmegaConf validates the merge, so misspelled keys and values of the
        wrong type raise instead of being silently ignored.
        """
        if cls._data is None:
            cls.load()
        base = OmegaConf.structured(schema)
        merged = OmegaConf.merge(base, cls._data.get(name) or {})
        return cast(T, OmegaConf.to_object(merged))

    @classmethod
    def sensor(cls) -> SensorCfg:
        """Typed ``sensor`` section."""
        return cls.section("sensor", SensorCfg)

    @classmethod
    def publisher(cls) -> PublisherCfg:
        """Typed ``publisher`` section."""
        return cls.section("publisher", PublisherCfg)

    @classmethod
    def set_loader(cls, loader: ConfigLoader) -> None:
        """Replace the config loader strategy (useful for testing)."""

        cls._loader = loader
        cls._data = None
        cls._logger.info(f"Config loader set to {loader.__class__.__name__}")
