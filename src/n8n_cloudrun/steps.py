"""
The runbook for putting n8n on Cloud Run, expressed as an ordered list of gcloud and docker invocations.

Every step shells out to the provider's own tooling, errors from those tools are surfaced verbatim.
"""

from __future__ import annotations

import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import rich.repr

from n8n_cloudrun._logging import logger
from n8n_cloudrun.config import DeploymentConfig, format_env_vars, mask_secrets
from n8n_cloudrun.errors import CommandFailedError, ToolNotFoundError

REQUIRED_SERVICES = ("run.googleapis.com", "artifactregistry.googleapis.com")
ALREADY_EXISTS_MARKERS = ("already exists", "ALREADY_EXISTS")


@rich.repr.auto
@dataclass(frozen=True)
class Step:
    """
    A single command of the runbook.

    :param name: Short identifier, used in logs and errors.
    :param description: What the step does, shown by ``n8n-cloudrun plan``.
    :param argv: The command to execute.
    :param capture: Capture stdout and return it from :meth:`StepRunner.run`.
    :param tolerate_exists: Treat an "already exists" failure as success, so reruns are idempotent.
    :param display_argv: A variant of ``argv`` with secrets masked, used for display only.
    """

    name: str
    description: str
    argv: List[str]
    capture: bool = False
    tolerate_exists: bool = False
    display_argv: Optional[List[str]] = field(default=None, compare=False)

    @property
    def display(self) -> str:
        return shlex.join(self.display_argv or self.argv)


def _deploy_step(cfg: DeploymentConfig, image: str) -> Step:
    svc = cfg.service
    env = cfg.n8n_env_vars()

    def argv_for(env_value: str) -> List[str]:
        argv = [
            "gcloud",
            "run",
            "deploy",
            cfg.gcp.service_name,
            f"--image={image}",
            f"--region={cfg.gcp.region}",
            "--platform=managed",
            f"--port={svc.container_port}",
            f"--memory={svc.memory}",
            f"--cpu={svc.cpu}",
            f"--min-instances={svc.min_instances}",
            f"--max-instances={svc.max_instances}",
            f"--timeout={svc.timeout}",
        ]
        if not svc.cpu_throttling:
            argv.append("--no-cpu-throttling")
        argv.append("--allow-unauthenticated" if svc.allow_unauthenticated else "--no-allow-unauthenticated")
        argv.extend(
            [
                f"--set-env-vars={env_value}",
                f"--add-volume=name={cfg.storage.volume_name},type=cloud-storage,bucket={cfg.storage.bucket}",
                f"--add-volume-mount=volume={cfg.storage.volume_name},mount-path={cfg.storage.mount_path}",
            ]
        )
        return argv

    return Step(
        name="deploy-service",
        description=f"Deploy {image} as Cloud Run service '{cfg.gcp.service_name}'",
        argv=argv_for(format_env_vars(env)),
        display_argv=argv_for(format_env_vars(mask_secrets(env))),
    )


def describe_step(cfg: DeploymentConfig) -> Step:
    return Step(
        name="describe-service",
        description="Look up the public URL of the service",
        argv=[
            "gcloud",
            "run",
            "services",
            "describe",
            cfg.gcp.service_name,
            f"--region={cfg.gcp.region}",
            "--format=value(status.url)",
        ],
        capture=True,
    )


def rebind_step(cfg: DeploymentConfig, url: str) -> Step:
    """
    Points n8n's host, editor and webhook URLs at the address Cloud Run assigned to the service.
    """
    return Step(
        name="rebind-url",
        description=f"Set N8N_HOST, N8N_EDITOR_BASE_URL and WEBHOOK_URL for {url}",
        argv=[
            "gcloud",
            "run",
            "services",
            "update",
            cfg.gcp.service_name,
            f"--region={cfg.gcp.region}",
            f"--update-env-vars={format_env_vars(cfg.public_url_env_vars(url))}",
        ],
    )


def plan(
    cfg: DeploymentConfig,
    skip_setup: bool = False,
    skip_build: bool = False,
    image: Optional[str] = None,
    context: str = ".",
) -> List[Step]:
    """
    Builds the ordered list of commands that deploy n8n.

    :param cfg: The deployment configuration.
    :param skip_setup: Leave out project configuration, API enablement, registry creation and docker auth.
    :param skip_build: Leave out the image build and push.
    :param image: Deploy this existing image instead of the one built from ``cfg``. Implies ``skip_build``.
    :param context: Docker build context.
    """
    gcp = cfg.gcp
    steps: List[Step] = []
    if not skip_setup:
        steps.extend(
            [
                Step(
                    name="configure-project",
                    description=f"Select project {gcp.project_id}",
                    argv=["gcloud", "config", "set", "project", gcp.project_id],
                ),
                Step(
                    name="enable-services",
                    description="Enable Cloud Run and Artifact Registry APIs",
                    argv=["gcloud", "services", "enable", *REQUIRED_SERVICES],
                ),
                Step(
                    name="create-repository",
                    description=f"Create Artifact Registry repository {gcp.repository}",
                    argv=[
                        "gcloud",
                        "artifacts",
                        "repositories",
                        "create",
                        gcp.repository,
                        "--repository-format=docker",
                        f"--location={gcp.region}",
                    ],
                    tolerate_exists=True,
                ),
                Step(
                    name="configure-docker",
                    description=f"Authenticate docker against {gcp.registry_host}",
                    argv=["gcloud", "auth", "configure-docker", gcp.registry_host, "--quiet"],
                ),
            ]
        )
    if image is None and not skip_build:
        steps.extend(
            [
                Step(
                    name="build-image",
                    description=f"Build {gcp.image}",
                    argv=["docker", "build", "--platform", "linux/amd64", "-t", gcp.image, context],
                ),
                Step(
                    name="push-image",
                    description=f"Push {gcp.image}",
                    argv=["docker", "push", gcp.image],
                ),
            ]
        )
    steps.append(_deploy_step(cfg, image or gcp.image))
    steps.append(describe_step(cfg))
    return steps


class StepRunner:
    """
    Executes :class:`Step` objects one at a time in the foreground.

    :param dry_run: Only log what would be executed.
    :param on_step: Optional callback invoked before every step, e.g. to print progress.
    """

    def __init__(self, dry_run: bool = False, on_step: Optional[Callable[[Step], None]] = None):
        self.dry_run = dry_run
        self.on_step = on_step

    def run(self, step: Step) -> str:
        if self.on_step is not None:
            self.on_step(step)
        if self.dry_run:
            logger.info(f"[dry-run] {step.display}")
            return ""

        logger.info(f"Running step {step.name}: {step.display}")
        try:
            result = subprocess.run(
                step.argv,
                check=False,
                text=True,
                stdout=subprocess.PIPE if step.capture else None,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(step.argv[0]) from e

        stderr = result.stderr or ""
        if result.returncode != 0:
            if step.tolerate_exists and any(m in stderr for m in ALREADY_EXISTS_MARKERS):
                logger.info(f"Step {step.name}: resource already exists, continuing")
                return ""
            raise CommandFailedError(step.name, result.returncode, stderr)
        if stderr:
            logger.debug(f"{step.name} stderr: {stderr.rstrip()}")
        return (result.stdout or "").strip() if step.capture else ""

    def run_all(self, steps: List[Step]) -> Dict[str, str]:
        """
        Runs ``steps`` in order, stopping at the first failure. Returns captured output keyed by step name.
        """
        outputs: Dict[str, str] = {}
        for step in steps:
            out = self.run(step)
            if step.capture:
                outputs[step.name] = out
        return outputs
