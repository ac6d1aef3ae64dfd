from __future__ import annotations

import itertools
import pathlib

import rich_click as click

from n8n_cloudrun._version import __version__
from n8n_cloudrun.cli import _common as common
from n8n_cloudrun.cli._option import MutuallyExclusiveOption
from n8n_cloudrun.config import DEFAULT_CONFIG_PATH, DeploymentConfig, mask_secrets, read_yaml
from n8n_cloudrun.errors import ConfigError, N8nCloudRunError

CONFIG_ENV_VAR = "N8N_CLOUDRUN_CONFIG"
DRY_RUN_URL = "https://SERVICE_URL"

click.rich_click.TEXT_MARKUP = "markdown"


def _unknown_url(deployment: DeploymentConfig) -> N8nCloudRunError:
    return N8nCloudRunError(
        "ServiceUrlUnknown", f"Could not determine the URL of service '{deployment.gcp.service_name}'."
    )


@click.group()
@click.version_option(__version__, prog_name="n8n-cloudrun")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity, -v for info and -vv for debug.")
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=pathlib.Path),
    envvar=CONFIG_ENV_VAR,
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Deployment configuration file.",
)
@click.pass_context
def main(ctx: click.Context, verbose: int, config_path: pathlib.Path):
    """
    Deploy n8n to Cloud Run backed by an external PostgreSQL database and a Cloud Storage volume.

    A typical first deployment:

    ```bash
    n8n-cloudrun init
    export DB_POSTGRESDB_PASSWORD=... N8N_ENCRYPTION_KEY=...
    n8n-cloudrun dockerfile -o Dockerfile
    n8n-cloudrun deploy
    ```
    """
    common.setup_logging(verbose)
    ctx.obj = common.CLIConfig(config_path=config_path)


@main.command(cls=common.CommandBase)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config file.")
@click.pass_obj
def init(cfg: common.CLIConfig, force: bool):
    """
    Write a starter configuration file.
    """
    path = cfg.config_path
    if path.exists() and not force:
        raise ConfigError(f"{path} already exists, pass --force to overwrite it.")
    path.write_text(DeploymentConfig.sample())
    click.echo(f"Wrote {path}")


@main.command(cls=common.CommandBase)
@click.option("--url", help="Also print the variables that bind n8n to this public URL.")
@click.option("--show-secrets", is_flag=True, default=False, help="Print secrets instead of masking them.")
@click.pass_obj
def env(cfg: common.CLIConfig, url: str | None, show_secrets: bool):
    """
    Print the environment n8n will be deployed with, one `KEY=VALUE` per line.
    """
    variables = cfg.deployment.n8n_env_vars()
    if not show_secrets:
        variables = mask_secrets(variables)
    if url:
        variables.update(cfg.deployment.public_url_env_vars(url))
    for k, v in variables.items():
        click.echo(f"{k}={v}")


@main.command(cls=common.CommandBase)
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=pathlib.Path),
    help="Write the Dockerfile here instead of printing it.",
)
@click.option("--base-image", help="Override the n8n base image from the config.")
@click.pass_obj
def dockerfile(cfg: common.CLIConfig, output: pathlib.Path | None, base_image: str | None):
    """
    Render the Dockerfile that wraps the stock n8n image with the port-adapter entrypoint.
    """
    from n8n_cloudrun.dockerfile import DEFAULT_BASE_IMAGE, render_dockerfile

    if base_image is None:
        base_image = DEFAULT_BASE_IMAGE
        if cfg.config_path.exists():
            base_image = (read_yaml(cfg.config_path).get("n8n") or {}).get("base_image") or DEFAULT_BASE_IMAGE
    content = render_dockerfile(base_image)
    if output is None:
        click.echo(content, nl=False)
        return
    output.write_text(content)
    click.echo(f"Wrote {output}")


@main.command(cls=common.CommandBase)
@click.option("--skip-setup", is_flag=True, default=False, help="Leave out the one-time project setup steps.")
@click.option("--skip-build", is_flag=True, default=False, help="Leave out the image build and push.")
@click.option("--context", default=".", show_default=True, help="Docker build context.")
@click.pass_obj
def plan(cfg: common.CLIConfig, skip_setup: bool, skip_build: bool, context: str):
    """
    Print the deployment commands as a shell script, with secrets masked.
    """
    from n8n_cloudrun.steps import plan as build_plan

    click.echo("#!/bin/sh\nset -e")
    for step in build_plan(cfg.deployment, skip_setup=skip_setup, skip_build=skip_build, context=context):
        click.echo(f"\n# {step.name}: {step.description}")
        click.echo(step.display)


@main.command(cls=common.CommandBase)
@click.option("--dry-run", is_flag=True, default=False, help="Log the commands without running them.")
@click.option("--skip-setup", is_flag=True, default=False, help="Leave out the one-time project setup steps.")
@click.option(
    "--skip-build",
    cls=MutuallyExclusiveOption,
    is_flag=True,
    default=False,
    mutually_exclusive=["image"],
    help="Leave out the image build and push.",
)
@click.option(
    "--image",
    cls=MutuallyExclusiveOption,
    mutually_exclusive=["skip_build"],
    help="Deploy an existing image reference instead of building one.",
)
@click.option("--context", default=".", show_default=True, help="Docker build context.")
@click.pass_obj
def deploy(
    cfg: common.CLIConfig,
    dry_run: bool,
    skip_setup: bool,
    skip_build: bool,
    image: str | None,
    context: str,
):
    """
    Run the full runbook: set up the project, build and push the image, deploy the service, then rebind n8n to the
    URL Cloud Run assigned to it.
    """
    from n8n_cloudrun.steps import StepRunner, describe_step, rebind_step
    from n8n_cloudrun.steps import plan as build_plan

    console = common.get_console()
    deployment = cfg.deployment
    steps = build_plan(deployment, skip_setup=skip_setup, skip_build=skip_build, image=image, context=context)
    # the rebind step runs after the planned ones
    total = len(steps) + 1
    counter = itertools.count(1)

    def announce(step):
        console.print(f"[bold]({next(counter)}/{total})[/bold] {step.description}")

    runner = StepRunner(dry_run=dry_run, on_step=announce)
    outputs = runner.run_all(steps)

    url = outputs.get(describe_step(deployment).name, "")
    if dry_run:
        url = DRY_RUN_URL
    elif not url:
        raise _unknown_url(deployment)

    runner.run(rebind_step(deployment, url))
    console.print(common.env_table("Public URL settings", deployment.public_url_env_vars(url)))
    if dry_run:
        console.print("[yellow]Dry run complete, nothing was changed.[/yellow]")
    else:
        console.print(f"[green]n8n is deployed at {url}[/green]")


@main.command(cls=common.CommandBase)
@click.pass_obj
def url(cfg: common.CLIConfig):
    """
    Print the public URL of the deployed service.
    """
    from n8n_cloudrun.steps import StepRunner, describe_step

    click.echo(StepRunner().run(describe_step(cfg.deployment)))


@main.command(cls=common.CommandBase)
@click.option("--url", "service_url", help="Public URL to bind to. Discovered from the service when omitted.")
@click.option("--dry-run", is_flag=True, default=False, help="Log the command without running it.")
@click.pass_obj
def rebind(cfg: common.CLIConfig, service_url: str | None, dry_run: bool):
    """
    Update N8N_HOST, N8N_EDITOR_BASE_URL and WEBHOOK_URL on the deployed service.
    """
    from n8n_cloudrun.steps import StepRunner, describe_step, rebind_step

    runner = StepRunner(dry_run=dry_run)
    if not service_url:
        service_url = StepRunner().run(describe_step(cfg.deployment))
        if not service_url:
            raise _unknown_url(cfg.deployment)
    runner.run(rebind_step(cfg.deployment, service_url))
    click.echo(f"Would bind n8n to {service_url}" if dry_run else f"Bound n8n to {service_url}")


if __name__ == "__main__":
    main()
