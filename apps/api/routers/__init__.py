"""Routers package."""

from . import (
    health,
    user_collections,
)
