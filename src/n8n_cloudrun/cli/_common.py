from __future__ import annotations

import logging
import pathlib
from dataclasses import dataclass
from typing import Dict, Optional

import rich_click as click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from n8n_cloudrun._logging import initialize_logger
from n8n_cloudrun.config import DeploymentConfig
from n8n_cloudrun.errors import N8nCloudRunError


@dataclass
class CLIConfig:
    """
    Shared state handed to every sub command through ``click.pass_obj``.
    """

    config_path: pathlib.Path
    _deployment: Optional[DeploymentConfig] = None

    @property
    def deployment(self) -> DeploymentConfig:
        if self._deployment is None:
            self._deployment = DeploymentConfig.from_yaml(self.config_path)
        return self._deployment


def setup_logging(verbose: int):
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = None
    initialize_logger(log_level=level, enable_rich=True)


def get_console() -> Console:
    return Console(soft_wrap=True)


def env_table(title: str, env: Dict[str, str]) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Variable", style="cyan", no_wrap=True)
    table.add_column("Value")
    for k, v in env.items():
        table.add_row(escape(k), escape(v))
    return table


class CommandBase(click.RichCommand):
    """
    Converts package errors into a red message and exit status 1 instead of a traceback.
    """

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except N8nCloudRunError as e:
            get_console().print(f"[red]{e.code}:[/red] {escape(str(e))}")
            ctx.exit(1)
