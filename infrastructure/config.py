"""
ENGINE CONFIGURATION
Loaded from config/engine.yaml, with defaults when the file is absent.
"""
import logging
import yaml
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger("ProcFlow.Config")

DEFAULT_CONFIG_PATH = "config/engine.yaml"

LOG_FORMAT = '%(asctime)s | %(name)-20s | %(levelname)-7s | %(message)s'


@dataclass
class EngineConfig:
    """Runtime settings for a DependencyEngine."""
    auto_drain: bool = True             # Drain the event queue after each update_status
    max_drain_passes: int = 1000        # Safety bound for the fixpoint loop
    notify_cycles: bool = True          # Report cycles found by deadlock detection
    persistence_path: Optional[str] = None
    error_log_dir: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, config_path: str = DEFAULT_CONFIG_PATH) -> "EngineConfig":
        try:
            with open(config_path, "r") as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning(f"Engine config not found at {config_path}, using defaults")
            return cls()

        scheduler = config.get("scheduler", {})
        notifications = config.get("notifications", {})
        storage = config.get("storage", {})
        logging_cfg = config.get("logging", {})

        return cls(
            auto_drain=scheduler.get("auto_drain", True),
            max_drain_passes=scheduler.get("max_drain_passes", 1000),
            notify_cycles=notifications.get("cycles", True),
            persistence_path=storage.get("graph_path"),
            error_log_dir=storage.get("error_log_dir"),
            log_level=logging_cfg.get("level", "INFO"),
        )


def configure_logging(level: str = "INFO"):
    """Apply the standard ProcFlow log format to the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt='%H:%M:%S'
    )
