"""Configuration and logging setup"""

import os
import sys
from dataclasses import dataclass, fields

from loguru import logger

from .connections import DEFAULT_SERVICE_RELAY

ENV_PREFIX = "NWC_BRIDGE_"


@dataclass
class BridgeConfig:
    data_dir: str = "./data"
    default_relay: str = DEFAULT_SERVICE_RELAY
    handler_timeout: float = 30.0
    reconnect_delay: float = 5.0
    db_pool_size: int = 16
    db_busy_timeout: float = 30.0
    pending_ttl: float = 600.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None, **overrides) -> "BridgeConfig":
        """
        read NWC_BRIDGE_<FIELD> variables, explicit overrides win

        Raises:
            ValueError: a variable can't be converted to the field's type
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            # str, int or float
            values[f.name] = f.type(raw)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def configure_logging(level: str = "INFO"):
    """replace loguru's default sink with one stderr sink at level"""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
