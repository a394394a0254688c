"""Node settings loaded from defaults, environment and CLI options."""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field


ENV_PREFIX = "PEERDROP_"


class Settings(BaseModel):
    host: str = "0.0.0.0"
    control_port: int = Field(3001, ge=1, le=65535)
    discovery_port: int = Field(3002, ge=0, le=65535)
    broadcast_address: str = "255.255.255.255"
    broadcast_interval: float = Field(10.0, gt=0)

    # Active subnet probe
    probe_batch_size: int = Field(20, ge=1)
    probe_timeout: float = Field(0.5, gt=0)
    probe_batch_delay: float = Field(0.05, ge=0)

    # Discovery round delays
    settle_delay: float = Field(1.0, ge=0)
    late_delay: float = Field(0.5, ge=0)

    forward_timeout: float = Field(3.0, gt=0)
    max_pending_per_address: int = Field(100, ge=1)

    advertised_address: Optional[str] = None
    display_name: Optional[str] = None
    discovery_enabled: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """Build settings from ``PEERDROP_*`` variables, then apply overrides."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
