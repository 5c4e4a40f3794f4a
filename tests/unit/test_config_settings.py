import pytest

from lms_admin.config import settings
from lms_admin.config.settings import _get_or_generate, load_settings

_ENV_VARS = (
    "DEMO_MODE",
    "DATABASE_URL",
    "KEYCLOAK_URL",
    "KEYCLOAK_REALM",
    "KEYCLOAK_ISSUER",
    "KEYCLOAK_ADMIN",
    "KEYCLOAK_ADMIN_PASSWORD",
    "KEYCLOAK_TIMEOUT",
    "OUTBOX_MAX_ATTEMPTS",
    "ADMIN_ROLE",
    "AUDIT_LOG_SIGNING_KEY",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    # Point /run/secrets lookups at an empty directory
    real_path = settings.Path

    def fake_path(target, *rest):
        if str(target) == "/run/secrets":
            return tmp_path
        return real_path(target, *rest)

    monkeypatch.setattr(settings, "Path", fake_path)


def test_demo_mode_defaults(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "true")

    cfg = load_settings()

    assert cfg.demo_mode is True
    assert cfg.database_url == "sqlite:///lms_admin.db"
    assert cfg.keycloak_url == "http://localhost:8080"
    assert cfg.keycloak_issuer == "http://localhost:8080/realms/lms-realm"
    assert cfg.keycloak_admin_password == "admin"
    assert cfg.audit_log_signing_key
    assert cfg.jwks_url == "http://localhost:8080/realms/lms-realm/protocol/openid-connect/certs"


def test_production_requires_admin_password(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/lms")
    monkeypatch.setenv("KEYCLOAK_URL", "https://kc.example.com")

    with pytest.raises(RuntimeError, match="KEYCLOAK_ADMIN_PASSWORD"):
        load_settings()


def test_production_requires_database_url(monkeypatch):
    monkeypatch.setenv("KEYCLOAK_ADMIN_PASSWORD", "s3cret")
    monkeypatch.setenv("KEYCLOAK_URL", "https://kc.example.com")

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        load_settings()


def test_production_values(monkeypatch):
    monkeypatch.setenv("KEYCLOAK_ADMIN_PASSWORD", "s3cret")
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/lms")
    monkeypatch.setenv("KEYCLOAK_URL", "https://kc.example.com/")
    monkeypatch.setenv("KEYCLOAK_ADMIN", "ops")
    monkeypatch.setenv("KEYCLOAK_TIMEOUT", "2.5")
    monkeypatch.setenv("OUTBOX_MAX_ATTEMPTS", "7")
    monkeypatch.setenv("ADMIN_ROLE", "lms-admin")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    cfg = load_settings()

    assert cfg.demo_mode is False
    assert cfg.keycloak_url == "https://kc.example.com"
    assert cfg.keycloak_admin == "ops"
    assert cfg.keycloak_timeout == 2.5
    assert cfg.outbox_max_attempts == 7
    assert cfg.admin_role == "lms-admin"
    assert cfg.log_level == "DEBUG"


def test_admin_password_read_from_secret_file(monkeypatch, tmp_path):
    (tmp_path / "keycloak_admin_password").write_text("from-file\n")
    monkeypatch.setenv("KEYCLOAK_ADMIN_PASSWORD", "from-env")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("KEYCLOAK_URL", "http://kc")
    monkeypatch.setenv("KEYCLOAK_ADMIN", "admin")

    assert load_settings().keycloak_admin_password == "from-file"


@pytest.mark.parametrize("value", ["abc", "0", "-1"])
def test_invalid_numbers_rejected(monkeypatch, value):
    monkeypatch.setenv("DEMO_MODE", "true")
    monkeypatch.setenv("OUTBOX_MAX_ATTEMPTS", value)

    with pytest.raises(RuntimeError, match="OUTBOX_MAX_ATTEMPTS"):
        load_settings()


def test_get_or_generate_optional_missing():
    assert _get_or_generate("DATABASE_URL", required=False) == ""
