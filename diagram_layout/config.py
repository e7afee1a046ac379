"""
Configuration for the layout engine and its host.

Settings have sensible defaults and can be overridden through
DIAGRAM_LAYOUT_* environment variables, e.g.:

    DIAGRAM_LAYOUT_MAX_HISTORY=100
    DIAGRAM_LAYOUT_DIRECTION=RIGHT
    DIAGRAM_LAYOUT_ALGORITHM=force
    DIAGRAM_LAYOUT_TIMEOUT=5.0
"""

import os
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from .models import DEFAULT_NODE_WIDTH, DEFAULT_NODE_HEIGHT, LayoutDirection

ENV_PREFIX = "DIAGRAM_LAYOUT_"

# Default layout parameters
DEFAULT_MAX_HISTORY = 50
DEFAULT_SPACING = 50
DEFAULT_LAYER_SPACING = 70
DEFAULT_ALGORITHM = "layered"


class LayoutOptions(BaseModel):
    """Options forwarded to the layout oracle on each invocation."""
    direction: LayoutDirection = LayoutDirection.DOWN
    spacing: float = Field(default=DEFAULT_SPACING, ge=0)
    layer_spacing: float = Field(default=DEFAULT_LAYER_SPACING, ge=0)
    algorithm: str = DEFAULT_ALGORITHM
    timeout: Optional[float] = Field(default=None, gt=0)  # seconds; None = wait forever


class LayoutSettings(BaseModel):
    """Settings for one diagram controller."""
    max_history: int = Field(default=DEFAULT_MAX_HISTORY, ge=1)
    direction: LayoutDirection = LayoutDirection.DOWN
    spacing: float = Field(default=DEFAULT_SPACING, ge=0)
    layer_spacing: float = Field(default=DEFAULT_LAYER_SPACING, ge=0)
    algorithm: str = DEFAULT_ALGORITHM
    layout_timeout: Optional[float] = Field(default=None, gt=0)
    default_node_width: float = Field(default=DEFAULT_NODE_WIDTH, gt=0)
    default_node_height: float = Field(default=DEFAULT_NODE_HEIGHT, gt=0)

    @field_validator('direction', mode='before')
    @classmethod
    def normalize_direction(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value

    def layout_options(self) -> LayoutOptions:
        return LayoutOptions(
            direction=self.direction,
            spacing=self.spacing,
            layer_spacing=self.layer_spacing,
            algorithm=self.algorithm,
            timeout=self.layout_timeout,
        )

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "LayoutSettings":
        """Build settings from DIAGRAM_LAYOUT_* environment variables."""
        env = os.environ if environ is None else environ
        overrides = {}
        for name in cls.model_fields:
            value = env.get(ENV_PREFIX + name.upper())
            if value is not None and value != "":
                overrides[name] = value
        # Shorter alias for the timeout
        timeout = env.get(ENV_PREFIX + "TIMEOUT")
        if timeout and "layout_timeout" not in overrides:
            overrides["layout_timeout"] = timeout
        return cls(**overrides)
