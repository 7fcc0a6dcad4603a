"""PromptCanvas - image generation history with content-addressed storage."""

__version__ = "0.3.0"

from promptcanvas.core.config import PromptCanvasConfig, config

__all__ = [
    "PromptCanvasConfig",
    "config",
]
