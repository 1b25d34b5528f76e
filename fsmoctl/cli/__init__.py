"""fsmoctl command line interface"""

from .fsmoctl_cli import app

__all__ = ["app"]
