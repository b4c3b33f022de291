"""HTTP surface for the championship escrow."""

from .server import create_app

__all__ = ["create_app"]
