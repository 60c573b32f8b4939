"""
Tests for environment configuration and command line overrides.
"""

import pytest

from env_config import ProvisioningConfig, load_config_from_env
from parsers.parser import parse_args


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "PROVISIONING_PORT",
        "PROVISIONING_LOG_LEVEL",
        "DNS_PROVIDER",
        "CLOUDFLARE_API_TOKEN",
        "DEFAULT_AVAILABILITY_ZONES",
        "POLL_INTERVAL_SECONDS",
        "PROVISIONING_STORE_PATH",
        "REGISTRANT_FIRST_NAME",
        "REGISTRANT_CONTACT_TYPE",
        "DOMAIN_AUTO_RENEW",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = ProvisioningConfig.from_env()

    assert config.port == 8080
    assert config.dns_provider == "route53"
    assert config.default_availability_zones == ["us-east-1a", "us-east-1f"]
    assert config.store_path is None
    assert config.registrant_contact == {"contact_type": "PERSON"}
    assert config.validate() == []


def test_values_are_read_from_environment(monkeypatch):
    monkeypatch.setenv("PROVISIONING_PORT", "9000")
    monkeypatch.setenv("DNS_PROVIDER", "Cloudflare")
    monkeypatch.setenv("CLOUDFLARE_API_TOKEN", "cf-token-0123456789")
    monkeypatch.setenv("DEFAULT_AVAILABILITY_ZONES", "eu-west-1a, eu-west-1b")
    monkeypatch.setenv("REGISTRANT_FIRST_NAME", "Ada")
    monkeypatch.setenv("DOMAIN_AUTO_RENEW", "false")

    config = ProvisioningConfig.from_env()

    assert config.port == 9000
    assert config.dns_provider == "cloudflare"
    assert config.default_availability_zones == ["eu-west-1a", "eu-west-1b"]
    assert config.registrant_contact["first_name"] == "Ada"
    assert config.auto_renew is False
    assert config.validate() == []


def test_cloudflare_requires_token(monkeypatch):
    monkeypatch.setenv("DNS_PROVIDER", "cloudflare")

    errors = ProvisioningConfig.from_env().validate()

    assert any("CLOUDFLARE_API_TOKEN" in e for e in errors)


def test_invalid_configuration_raises(monkeypatch):
    monkeypatch.setenv("PROVISIONING_PORT", "70000")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "0")

    with pytest.raises(ValueError) as excinfo:
        load_config_from_env()

    assert "PROVISIONING_PORT" in str(excinfo.value)
    assert "POLL_INTERVAL_SECONDS" in str(excinfo.value)


def test_command_line_overrides_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("PROVISIONING_PORT", "9000")
    store_path = str(tmp_path / "operations.json")

    args = parse_args(
        ["--port", "9100", "--log-level", "debug", "--poll-interval", "2.5", "--store-path", store_path]
    )

    config = args.config_obj
    assert config.port == 9100
    assert config.log_level == "debug"
    assert config.poll_interval_seconds == 2.5
    assert config.store_path == store_path


def test_command_line_validation_failure(monkeypatch):
    with pytest.raises(ValueError):
        parse_args(["--dns-provider", "cloudflare"])
