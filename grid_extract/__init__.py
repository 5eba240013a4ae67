"""Grid box extraction offloaded to a background worker."""

from .geometry import BoxIndexError, GridTemplate, Paddings, Rectangle

__all__ = ["BoxIndexError", "GridTemplate", "Paddings", "Rectangle"]
