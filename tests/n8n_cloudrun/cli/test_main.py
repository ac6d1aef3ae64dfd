import subprocess

import mock
import pytest
from click.testing import CliRunner

from n8n_cloudrun.cli.main import main

SECRETS = {"DB_POSTGRESDB_PASSWORD": "s3cret", "N8N_ENCRYPTION_KEY": "enc-key"}
SERVICE_URL = "https://n8n-abc123-uc.a.run.app"


@pytest.fixture(scope="function")
def runner():
    return CliRunner()


def _fake_gcloud(describe_output=SERVICE_URL + "\n"):
    def run(argv, **kwargs):
        stdout = describe_output if "describe" in argv else None
        return subprocess.CompletedProcess(args=argv, returncode=0, stdout=stdout, stderr="")

    return run


def test_version(runner: CliRunner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "n8n-cloudrun" in result.output


def test_init_writes_sample(runner: CliRunner, tmp_path):
    path = tmp_path / "deploy.yaml"
    result = runner.invoke(main, ["-c", str(path), "init"])
    assert result.exit_code == 0, result.output
    assert path.read_text().startswith("# n8n on Cloud Run deployment settings.")


def test_init_refuses_to_overwrite(runner: CliRunner, config_file):
    config_file.write_text("keep me")
    result = runner.invoke(main, ["-c", str(config_file), "init"])
    assert result.exit_code == 1
    assert "already exists" in result.output
    assert config_file.read_text() == "keep me"


def test_init_force(runner: CliRunner, config_file):
    config_file.write_text("replace me")
    result = runner.invoke(main, ["-c", str(config_file), "init", "--force"])
    assert result.exit_code == 0, result.output
    assert config_file.read_text() != "replace me"


def test_config_from_environment_variable(runner: CliRunner, config_file):
    result = runner.invoke(main, ["env"], env={**SECRETS, "N8N_CLOUDRUN_CONFIG": str(config_file)})
    assert result.exit_code == 0, result.output
    assert "DB_POSTGRESDB_HOST=db.example.com" in result.output


def test_missing_config(runner: CliRunner, tmp_path):
    result = runner.invoke(main, ["-c", str(tmp_path / "missing.yaml"), "env"], env=SECRETS)
    assert result.exit_code == 1
    assert "not found" in result.output


def test_env_masks_secrets(runner: CliRunner, config_file):
    result = runner.invoke(main, ["-c", str(config_file), "env"], env=SECRETS)
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert "DB_TYPE=postgresdb" in lines
    assert "DB_POSTGRESDB_PASSWORD=****" in lines
    assert "N8N_ENCRYPTION_KEY=****" in lines
    assert "s3cret" not in result.output


def test_env_show_secrets_and_url(runner: CliRunner, config_file):
    result = runner.invoke(
        main, ["-c", str(config_file), "env", "--show-secrets", "--url", SERVICE_URL], env=SECRETS
    )
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert "DB_POSTGRESDB_PASSWORD=s3cret" in lines
    assert "N8N_HOST=n8n-abc123-uc.a.run.app" in lines
    assert f"WEBHOOK_URL={SERVICE_URL}/" in lines


def test_env_missing_secrets(runner: CliRunner, config_file):
    result = runner.invoke(
        main, ["-c", str(config_file), "env"], env={"DB_POSTGRESDB_PASSWORD": None, "N8N_ENCRYPTION_KEY": None}
    )
    assert result.exit_code == 1
    assert "Missing required secrets" in result.output


def test_dockerfile_without_config(runner: CliRunner, tmp_path):
    result = runner.invoke(main, ["-c", str(tmp_path / "missing.yaml"), "dockerfile"])
    assert result.exit_code == 0, result.output
    assert result.output.startswith("FROM n8nio/n8n:latest")


def test_dockerfile_written_with_base_image(runner: CliRunner, tmp_path):
    out = tmp_path / "Dockerfile"
    result = runner.invoke(
        main, ["-c", str(tmp_path / "missing.yaml"), "dockerfile", "-o", str(out), "--base-image", "n8nio/n8n:1.80.0"]
    )
    assert result.exit_code == 0, result.output
    assert out.read_text().startswith("FROM n8nio/n8n:1.80.0")


def test_dockerfile_needs_no_secrets(runner: CliRunner, config_file):
    config_file.write_text(config_file.read_text().replace("n8nio/n8n:latest", "n8nio/n8n:1.80.0"))
    result = runner.invoke(
        main,
        ["-c", str(config_file), "dockerfile"],
        env={"DB_POSTGRESDB_PASSWORD": None, "N8N_ENCRYPTION_KEY": None},
    )
    assert result.exit_code == 0, result.output
    assert result.output.startswith("FROM n8nio/n8n:1.80.0")


def test_plan(runner: CliRunner, config_file):
    result = runner.invoke(main, ["-c", str(config_file), "plan"], env=SECRETS)
    assert result.exit_code == 0, result.output
    assert result.output.startswith("#!/bin/sh\nset -e\n")
    assert "# configure-project:" in result.output
    assert "gcloud config set project my-gcp-project" in result.output
    assert "# deploy-service:" in result.output
    assert "s3cret" not in result.output
    assert "enc-key" not in result.output


def test_plan_skip_setup(runner: CliRunner, config_file):
    result = runner.invoke(main, ["-c", str(config_file), "plan", "--skip-setup", "--skip-build"], env=SECRETS)
    assert result.exit_code == 0, result.output
    assert "configure-project" not in result.output
    assert "docker build" not in result.output


@mock.patch("subprocess.run")
def test_deploy_dry_run(mock_run, runner: CliRunner, config_file):
    result = runner.invoke(main, ["-c", str(config_file), "deploy", "--dry-run"], env=SECRETS)
    assert result.exit_code == 0, result.output
    mock_run.assert_not_called()
    assert "(1/9)" in result.output
    assert "(9/9)" in result.output
    assert "Dry run complete" in result.output


def test_deploy(runner: CliRunner, config_file):
    with mock.patch("subprocess.run", side_effect=_fake_gcloud()) as mock_run:
        result = runner.invoke(main, ["-c", str(config_file), "deploy"], env=SECRETS)

    assert result.exit_code == 0, result.output
    commands = [c.args[0] for c in mock_run.call_args_list]
    assert [c[:3] for c in commands] == [
        ["gcloud", "config", "set"],
        ["gcloud", "services", "enable"],
        ["gcloud", "artifacts", "repositories"],
        ["gcloud", "auth", "configure-docker"],
        ["docker", "build", "--platform"],
        ["docker", "push", "us-central1-docker.pkg.dev/my-gcp-project/n8n-repo/n8n:latest"],
        ["gcloud", "run", "deploy"],
        ["gcloud", "run", "services"],
        ["gcloud", "run", "services"],
    ]
    rebind = commands[-1]
    assert rebind[3] == "update"
    assert f"N8N_EDITOR_BASE_URL={SERVICE_URL}/" in rebind[-1]
    assert f"n8n is deployed at {SERVICE_URL}" in result.output


def test_deploy_existing_image(runner: CliRunner, config_file):
    with mock.patch("subprocess.run", side_effect=_fake_gcloud()) as mock_run:
        result = runner.invoke(
            main, ["-c", str(config_file), "deploy", "--skip-setup", "--image", "docker.io/me/n8n:1"], env=SECRETS
        )

    assert result.exit_code == 0, result.output
    commands = [c.args[0] for c in mock_run.call_args_list]
    assert len(commands) == 3
    assert "--image=docker.io/me/n8n:1" in commands[0]


def test_deploy_image_and_skip_build_are_exclusive(runner: CliRunner, config_file):
    result = runner.invoke(
        main, ["-c", str(config_file), "deploy", "--skip-build", "--image", "docker.io/me/n8n:1"], env=SECRETS
    )
    assert result.exit_code == 2
    assert "mutually exclusive" in result.output


def test_deploy_unknown_url(runner: CliRunner, config_file):
    with mock.patch("subprocess.run", side_effect=_fake_gcloud(describe_output="")):
        result = runner.invoke(main, ["-c", str(config_file), "deploy", "--skip-setup", "--skip-build"], env=SECRETS)
    assert result.exit_code == 1
    assert "ServiceUrlUnknown" in result.output


def test_deploy_failure_surfaces_tool_error(runner: CliRunner, config_file):
    failed = subprocess.CompletedProcess(args=[], returncode=1, stdout=None, stderr="ERROR: (gcloud) quota exceeded")
    with mock.patch("subprocess.run", return_value=failed) as mock_run:
        result = runner.invoke(main, ["-c", str(config_file), "deploy"], env=SECRETS)
    assert result.exit_code == 1
    assert mock_run.call_count == 1
    assert "CommandFailed" in result.output
    assert "quota exceeded" in result.output


def test_url(runner: CliRunner, config_file):
    with mock.patch("subprocess.run", side_effect=_fake_gcloud()):
        result = runner.invoke(main, ["-c", str(config_file), "url"], env=SECRETS)
    assert result.exit_code == 0, result.output
    assert result.output.strip() == SERVICE_URL


def test_rebind_with_url(runner: CliRunner, config_file):
    with mock.patch("subprocess.run", side_effect=_fake_gcloud()) as mock_run:
        result = runner.invoke(main, ["-c", str(config_file), "rebind", "--url", "https://n8n.example.com"], env=SECRETS)
    assert result.exit_code == 0, result.output
    mock_run.assert_called_once()
    assert "--update-env-vars=N8N_HOST=n8n.example.com," in mock_run.call_args.args[0][-1]


def test_rebind_discovers_url(runner: CliRunner, config_file):
    with mock.patch("subprocess.run", side_effect=_fake_gcloud()) as mock_run:
        result = runner.invoke(main, ["-c", str(config_file), "rebind"], env=SECRETS)
    assert result.exit_code == 0, result.output
    assert mock_run.call_count == 2
    assert f"Bound n8n to {SERVICE_URL}" in result.output


def test_rebind_dry_run_still_discovers_url(runner: CliRunner, config_file):
    with mock.patch("subprocess.run", side_effect=_fake_gcloud()) as mock_run:
        result = runner.invoke(main, ["-c", str(config_file), "rebind", "--dry-run"], env=SECRETS)
    assert result.exit_code == 0, result.output
    assert mock_run.call_count == 1
