import pytest

from n8n_cloudrun.config import DeploymentConfig

SECRETS = {"DB_POSTGRESDB_PASSWORD": "s3cret", "N8N_ENCRYPTION_KEY": "enc-key"}


@pytest.fixture
def config_dict():
    return {
        "gcp": {"project_id": "my-project", "region": "europe-west1", "repository": "n8n-repo"},
        "database": {"host": "db.example.com", "user": "n8n", "name": "n8n"},
        "storage": {"bucket": "my-bucket"},
    }


@pytest.fixture
def deployment(config_dict):
    return DeploymentConfig.from_dict(config_dict, environ=SECRETS)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "n8n-cloudrun.yaml"
    path.write_text(DeploymentConfig.sample())
    return path
