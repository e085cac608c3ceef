import json
from pathlib import Path

import pytest

from zonectl.config import load_config, load_credentials
from zonectl.errors import ConfigurationError, CredentialsError

ENV_KEYS = (
    "ZONECTL_CREDS_FILE",
    "ZONECTL_LOG_LEVEL",
    "ZONECTL_MAX_CONCURRENCY",
    "ZONECTL_WORKERS",
    "ZONECTL_DEFAULT_TTL",
    "ZONECTL_SPF_CACHE",
    "ZONECTL_SPF_LIVE",
    "ZONECTL_TIMEOUT",
    "ZONECTL_POPULATE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    # keep load_dotenv away from a developer's .env
    monkeypatch.chdir(tmp_path)


def test_defaults():
    config = load_config()
    assert config.creds_file == Path("creds.json")
    assert config.log_level == "INFO"
    assert config.max_concurrency == 4
    assert config.workers == 8
    assert config.default_ttl == 300
    assert config.spf_live is True
    assert config.timeout == 0
    assert config.populate is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ZONECTL_CREDS_FILE", "/etc/zonectl/creds.yaml")
    monkeypatch.setenv("ZONECTL_WORKERS", "2")
    monkeypatch.setenv("ZONECTL_SPF_LIVE", "no")
    monkeypatch.setenv("ZONECTL_TIMEOUT", "12.5")
    monkeypatch.setenv("ZONECTL_POPULATE", "false")
    config = load_config()
    assert config.creds_file == Path("/etc/zonectl/creds.yaml")
    assert config.workers == 2
    assert config.spf_live is False
    assert config.timeout == 12.5
    assert config.populate is False


def test_dotenv_file_is_read(tmp_path):
    (tmp_path / ".env").write_text("ZONECTL_DEFAULT_TTL=3600\n", encoding="utf-8")
    assert load_config().default_ttl == 3600


@pytest.mark.parametrize(
    "key, value",
    [
        ("ZONECTL_WORKERS", "many"),
        ("ZONECTL_MAX_CONCURRENCY", "0"),
        ("ZONECTL_TIMEOUT", "soon"),
    ],
)
def test_invalid_values(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigurationError):
        load_config()


def test_credentials_json_with_substitution(tmp_path, monkeypatch):
    monkeypatch.setenv("ZONECTL_TEST_SECRET", "s3cret")
    path = tmp_path / "creds.json"
    path.write_text(
        json.dumps({"bind": {"TYPE": "BIND", "directory": "zones"}, "dyn": {"TYPE": "RFC2136", "tsig_secret": "$ZONECTL_TEST_SECRET", "port": 5353}}),
        encoding="utf-8",
    )
    creds = load_credentials(path)
    assert creds["bind"] == {"TYPE": "BIND", "directory": "zones"}
    assert creds["dyn"]["tsig_secret"] == "s3cret"
    assert creds["dyn"]["port"] == "5353"


def test_credentials_yaml(tmp_path):
    path = tmp_path / "creds.yaml"
    path.write_text("none:\n  TYPE: NONE\n", encoding="utf-8")
    assert load_credentials(path) == {"none": {"TYPE": "NONE"}}


def test_credentials_errors(tmp_path):
    with pytest.raises(ConfigurationError, match="cannot read"):
        load_credentials(tmp_path / "missing.json")

    path = tmp_path / "creds.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="cannot parse"):
        load_credentials(path)

    path.write_text(json.dumps({"bind": {"directory": "zones"}}), encoding="utf-8")
    with pytest.raises(CredentialsError, match="TYPE"):
        load_credentials(path)

    path.write_text(json.dumps({"bind": {"TYPE": "BIND", "secret": "$ZONECTL_TEST_UNSET_VARIABLE"}}), encoding="utf-8")
    with pytest.raises(CredentialsError, match="ZONECTL_TEST_UNSET_VARIABLE"):
        load_credentials(path)
