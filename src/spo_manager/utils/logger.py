import logging
import logging.config
from pathlib import Path

import yaml
from pythonjsonlogger.json import JsonFormatter

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


class LoggingConfiguration:
    """Logging setup from a YAML configuration file."""

    @staticmethod
    def setup_logging(
        config_path: str = "config/logging.yaml", default_level=logging.INFO
    ):
        """Configure application logging from a YAML file."""
        path = Path(config_path)
        if not path.exists():
            logging.basicConfig(level=default_level)
            logging.warning(
                f"Logging config file not found at {config_path}. Falling back to basic configuration."
            )
            return

        with open(path, "rt") as f:
            try:
                config = yaml.safe_load(f.read())
                logging.config.dictConfig(config)
            except (yaml.YAMLError, ValueError, TypeError) as e:
                logging.basicConfig(level=default_level)
                logging.warning(
                    f"Failed to load logging config from {config_path}. Error: {e}"
                )
                logging.warning("Falling back to basic configuration.")

    @staticmethod
    def add_json_file_handler(log_file: str, level=logging.DEBUG) -> logging.Handler:
        """Attach a JSON-lines file handler to the package logger."""
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(JsonFormatter(DEFAULT_LOG_FORMAT))

        package_logger = logging.getLogger("spo_manager")
        package_logger.addHandler(handler)
        if package_logger.level == logging.NOTSET or package_logger.level > level:
            package_logger.setLevel(level)
        return handler
