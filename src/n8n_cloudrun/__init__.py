"""
Deploy n8n to Cloud Run with an external PostgreSQL database and a Cloud Storage volume.
"""

from __future__ import annotations

from ._version import __version__
from .config import DeploymentConfig
from .errors import CommandFailedError, ConfigError, N8nCloudRunError, ToolNotFoundError

__all__ = [
    "CommandFailedError",
    "ConfigError",
    "DeploymentConfig",
    "N8nCloudRunError",
    "ToolNotFoundError",
    "__version__",
]
