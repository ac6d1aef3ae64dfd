"""
Container entrypoint for n8n on Cloud Run.

Cloud Run tells the container which port to listen on through ``PORT``, while n8n reads its listening port from
``N8N_PORT``. This module copies the former into the latter and then hands the process over to n8n's stock
entrypoint. Nothing is validated: a malformed value surfaces inside n8n.
"""

from __future__ import annotations

import os
import shlex
import typing

import click

from n8n_cloudrun._logging import log, logger

PLATFORM_PORT_ENV_VAR = "PORT"
APP_PORT_ENV_VAR = "N8N_PORT"
ENTRYPOINT_ENV_VAR = "N8N_CLOUDRUN_ENTRYPOINT"
DEFAULT_ENTRYPOINT = "tini -- /docker-entrypoint.sh"


def remap_port(environ: typing.MutableMapping[str, str]) -> str | None:
    """
    Copies the platform port into the n8n port variable.

    :param environ: The environment to rewrite, normally ``os.environ``.
    :return: The value written to ``N8N_PORT``, or None when ``PORT`` is unset or empty and nothing was written.
    """
    port = environ.get(PLATFORM_PORT_ENV_VAR)
    if not port:
        return None
    environ[APP_PORT_ENV_VAR] = port
    return port


@log
def successor_command(entrypoint: str, args: typing.Sequence[str]) -> list[str]:
    command = shlex.split(entrypoint)
    if not command:
        command = shlex.split(DEFAULT_ENTRYPOINT)
    return [*command, *args]


def delegate(command: typing.Sequence[str], environ: typing.Mapping[str, str]) -> typing.NoReturn:
    """
    Replaces the current process with ``command``. Does not return unless exec fails, in which case the OSError
    propagates.
    """
    logger.debug(f"Delegating to: {shlex.join(command)}")
    os.execvpe(command[0], list(command), dict(environ))


@click.command(
    context_settings={
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
        "help_option_names": [],
    }
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def main(args: tuple[str, ...]):
    """
    Remap PORT to N8N_PORT and exec the n8n entrypoint. Every argument, ``--help`` included, is forwarded to it.
    The entrypoint can be replaced through ``N8N_CLOUDRUN_ENTRYPOINT``.
    """
    port = remap_port(os.environ)
    if port is None:
        logger.debug(f"{PLATFORM_PORT_ENV_VAR} not set, n8n keeps its own port configuration")
    else:
        logger.debug(f"Set {APP_PORT_ENV_VAR}={port} from {PLATFORM_PORT_ENV_VAR}")

    entrypoint = os.environ.get(ENTRYPOINT_ENV_VAR, DEFAULT_ENTRYPOINT)
    delegate(successor_command(entrypoint, args), os.environ)


if __name__ == "__main__":
    main()
