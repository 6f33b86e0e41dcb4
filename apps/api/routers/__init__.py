"""Routers package."""

from . import (
    health,
    analysis,
)
