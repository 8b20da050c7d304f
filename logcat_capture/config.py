"""Configuration loading from CLI args, env vars, and optional YAML file."""

import os
import logging
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Config:
    product_name: str = "QA BlackBox"
    flush_modulus: int = 10              # flush when relative ms is a multiple of this
    terminate_timeout: float = 2.0       # seconds before SIGTERM escalates to SIGKILL
    su_binary: str = "su"
    logcat_binary: str = "logcat"
    log_format: str = "threadtime"

    def logcat_args(self) -> list[str]:
        return [self.logcat_binary, "-v", self.log_format]


def load_yaml_config(path: str | None) -> dict:
    """Load engine settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
        return data
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}


def _setting(env_key: str, yaml_data: dict, yaml_key: str, default):
    value = os.environ.get(env_key)
    if value is not None:
        return value
    return yaml_data.get(yaml_key, default)


def load_config(cli_args=None, yaml_data: dict | None = None) -> Config:
    """Build Config from env vars, parsed YAML data and CLI overrides.

    Precedence: CLI > env > YAML > defaults.
    """
    yaml_data = yaml_data or {}

    flush_modulus = int(_setting("LOGCAT_FLUSH_MODULUS", yaml_data, "flush_modulus", Config.flush_modulus))
    if flush_modulus <= 0:
        raise ValueError(f"flush_modulus must be positive, got {flush_modulus}")

    terminate_timeout = float(
        _setting("LOGCAT_TERMINATE_TIMEOUT", yaml_data, "terminate_timeout", Config.terminate_timeout)
    )
    if terminate_timeout < 0:
        raise ValueError(f"terminate_timeout must be >= 0, got {terminate_timeout}")

    product_name = _setting("LOGCAT_PRODUCT_NAME", yaml_data, "product_name", Config.product_name)
    if cli_args is not None and getattr(cli_args, "product_name", None):
        product_name = cli_args.product_name

    return Config(
        product_name=str(product_name),
        flush_modulus=flush_modulus,
        terminate_timeout=terminate_timeout,
        su_binary=str(_setting("LOGCAT_SU_BINARY", yaml_data, "su_binary", Config.su_binary)),
        logcat_binary=str(_setting("LOGCAT_BINARY", yaml_data, "logcat_binary", Config.logcat_binary)),
        log_format=str(yaml_data.get("log_format", Config.log_format)),
    )
