"""HTTP API for the invitation shop."""
from .main import create_app

__all__ = ["create_app"]
