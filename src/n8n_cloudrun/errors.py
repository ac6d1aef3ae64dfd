"""
Exceptions raised by the n8n-cloudrun runbook tooling.

The port-adapter shim raises none of these; it never detects errors of its own.
"""

from __future__ import annotations


class N8nCloudRunError(Exception):
    """
    Base class for all errors raised by this package. ``code`` is a short machine readable identifier.
    """

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


class ConfigError(N8nCloudRunError):
    """Raised when the deployment configuration is missing or invalid."""

    def __init__(self, message: str):
        super().__init__("ConfigError", message)


class ToolNotFoundError(N8nCloudRunError):
    """Raised when a required command line tool such as ``gcloud`` or ``docker`` is not on the PATH."""

    def __init__(self, tool: str):
        super().__init__("ToolNotFound", f"Required executable '{tool}' was not found on PATH.")
        self.tool = tool


class CommandFailedError(N8nCloudRunError):
    """
    Raised when a platform command exits with a non-zero status. The tool's stderr is kept verbatim.
    """

    def __init__(self, step: str, returncode: int, stderr: str = ""):
        message = f"Step '{step}' failed with exit code {returncode}"
        if stderr:
            message = f"{message}:\n{stderr.rstrip()}"
        super().__init__("CommandFailed", message)
        self.step = step
        self.returncode = returncode
        self.stderr = stderr
