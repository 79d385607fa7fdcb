import pytest

from metasync.config import Config

ENV_VARS = [
    "MONGO_CONNECTION_STRING", "MONGO_HOST", "MONGO_PORT", "MONGO_USERNAME", "MONGO_PASSWORD",
    "MONGO_DATABASE", "MONGO_COLLECTION", "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN", "AWS_REGION", "AWS_S3_ENDPOINT_URL", "METASYNC_MAX_WORKERS",
    "METASYNC_ON_BUCKET_ERROR", "METASYNC_PAGINATE_OBJECTS", "METASYNC_METRICS_PORT",
    "METASYNC_METRICS_ENABLED",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_yaml(tmp_path):
    config = Config(config_dir=tmp_path)

    mongo = config.get_mongodb_config()
    assert mongo["connection_string"] == "mongodb://localhost:27017/"
    assert mongo["database"] == "metadatastore"
    assert mongo["collection"] == "metadatabucket"
    assert config.get_sync_config() == {
        "max_workers": 0,
        "on_bucket_error": "raise",
        "paginate_objects": True,
        "page_size": 1000,
    }


def test_yaml_values_are_loaded(tmp_path):
    (tmp_path / "services.yml").write_text(
        "mongodb:\n  host: db.internal\n  database: inventory\n"
        "sync:\n  max_workers: 8\n  on_bucket_error: log\n  paginate_objects: false\n"
    )
    config = Config(config_dir=tmp_path)

    assert config.get_mongodb_config()["connection_string"] == "mongodb://db.internal:27017/"
    assert config.get_mongodb_config()["database"] == "inventory"
    sync = config.get_sync_config()
    assert sync["max_workers"] == 8
    assert sync["on_bucket_error"] == "log"
    assert sync["paginate_objects"] is False


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    (tmp_path / "services.yml").write_text("sync:\n  max_workers: 8\n")
    monkeypatch.setenv("METASYNC_MAX_WORKERS", "2")
    monkeypatch.setenv("METASYNC_PAGINATE_OBJECTS", "no")
    monkeypatch.setenv("MONGO_USERNAME", "svc")
    monkeypatch.setenv("MONGO_PASSWORD", "pw")
    monkeypatch.setenv("AWS_REGION", "eu-west-3")

    config = Config(config_dir=tmp_path)

    assert config.get_sync_config()["max_workers"] == 2
    assert config.get_sync_config()["paginate_objects"] is False
    assert config.get_mongodb_config()["connection_string"] == "mongodb://svc:pw@localhost:27017/"
    assert config.get_s3_config()["region"] == "eu-west-3"


def test_unknown_error_policy_falls_back(tmp_path, monkeypatch):
    monkeypatch.setenv("METASYNC_ON_BUCKET_ERROR", "ignore")
    assert Config(config_dir=tmp_path).get_sync_config()["on_bucket_error"] == "raise"


def test_broken_yaml_yields_empty_config(tmp_path):
    (tmp_path / "services.yml").write_text("mongodb: [unclosed\n")
    assert Config(config_dir=tmp_path).services == {}


def test_half_configured_credentials_are_invalid(tmp_path, monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    assert Config(config_dir=tmp_path).validate_config()["s3"] is False

    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    assert Config(config_dir=tmp_path).validate_config() == {"mongodb": True, "s3": True}
