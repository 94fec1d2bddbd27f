"""Application configuration loaded from JSON and merged with CLI options."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import ConfigError
from .retry_handler import RetryConfig

logger = logging.getLogger(__name__)

VALID_CERT_EXTENSIONS = (".pem", ".pfx", ".p12")


@dataclass
class AuthConfig:
    tenant_id: str
    client_id: str
    certificate_path: str
    certificate_password: Optional[str] = None


@dataclass
class DbConfig:
    path: str = "spo_manager.db"


@dataclass
class CompareDefaults:
    threshold_type: str = "percentage"
    threshold_value: float = 5.0


@dataclass
class AppConfig:
    auth: AuthConfig
    target_auth: Optional[AuthConfig] = None
    db: DbConfig = field(default_factory=DbConfig)
    compare: CompareDefaults = field(default_factory=CompareDefaults)
    retry: RetryConfig = field(default_factory=RetryConfig)


def _auth_from_dict(data: Dict[str, Any], section: str) -> AuthConfig:
    try:
        return AuthConfig(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid '{section}' section: {e}")


def load_config(config_path: str = "config/config.json") -> AppConfig:
    """Load application configuration from a JSON file."""
    try:
        with open(config_path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found at: {config_path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in configuration file {config_path}: {e}")

    if "auth" not in data:
        raise ConfigError("Missing 'auth' section in configuration")

    auth = _auth_from_dict(data["auth"], "auth")
    target_auth = None
    if data.get("target_auth"):
        target_auth = _auth_from_dict(data["target_auth"], "target_auth")

    try:
        db = DbConfig(**data.get("db", {}))
        compare = CompareDefaults(**data.get("compare", {}))
        retry = RetryConfig(**data.get("retry", {}))
    except TypeError as e:
        raise ConfigError(f"Configuration validation error: {e}")

    config = AppConfig(auth=auth, target_auth=target_auth, db=db, compare=compare, retry=retry)
    logger.debug(f"Loaded configuration from {config_path}")
    return config


def merge_cli_args(config: AppConfig, cli_args: Dict[str, Any]) -> AppConfig:
    """Apply CLI overrides. CLI values take precedence over the file."""
    if cli_args.get("db_path") is not None:
        config.db.path = cli_args["db_path"]
        logger.debug(f"Overriding database path with CLI value: {cli_args['db_path']}")

    return config


def validate_config(config: AppConfig, check_certificates: bool = True) -> None:
    """Validate a loaded configuration.

    Raises:
        ConfigError: If configuration is invalid
    """
    for section, auth in (("auth", config.auth), ("target_auth", config.target_auth)):
        if auth is None:
            continue
        for name in ("tenant_id", "client_id", "certificate_path"):
            if not getattr(auth, name):
                raise ConfigError(f"Missing required {section} field: {name}")

        cert_path = Path(auth.certificate_path)
        if cert_path.suffix.lower() not in VALID_CERT_EXTENSIONS:
            raise ConfigError(
                f"Invalid certificate file type: {cert_path.suffix}. "
                f"Supported types: {', '.join(VALID_CERT_EXTENSIONS)}"
            )
        if check_certificates and not cert_path.exists():
            raise ConfigError(f"Certificate file not found: {cert_path}")

    if config.compare.threshold_type not in ("percentage", "absolute"):
        raise ConfigError("compare.threshold_type must be 'percentage' or 'absolute'")
    if config.compare.threshold_value < 0:
        raise ConfigError("compare.threshold_value must not be negative")
    if config.retry.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be a positive integer")

    logger.debug("Configuration validation passed")


def load_and_merge_config(config_path: str = "config/config.json",
                          cli_args: Optional[Dict[str, Any]] = None,
                          check_certificates: bool = True) -> AppConfig:
    """Load configuration from file, merge CLI arguments and validate."""
    config = load_config(config_path)
    if cli_args:
        config = merge_cli_args(config, cli_args)
    validate_config(config, check_certificates=check_certificates)
    return config


def get_config_template() -> Dict[str, Any]:
    """Get a configuration template with all available options."""
    return {
        "auth": {
            "tenant_id": "your-tenant-id",
            "client_id": "your-client-id",
            "certificate_path": "/path/to/certificate.pem",
            "certificate_password": None
        },
        "target_auth": None,
        "db": {
            "path": "spo_manager.db"
        },
        "compare": {
            "threshold_type": "percentage",
            "threshold_value": 5.0
        },
        "retry": {
            "max_attempts": 5
        }
    }


def create_config_file(path: str = "config/config.json") -> None:
    """Write a template configuration file."""
    config_path = Path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        json.dump(get_config_template(), f, indent=2)

    logger.info(f"Created configuration template at: {config_path}")
