"""
Configuration loading: YAML sets, environment overrides and validation.
"""

from pathlib import Path

import pytest
import yaml

from backoffice_config import get_active_config
from backoffice_config.loader import apply_env_overrides, compute_checksum, parse_config
from backoffice_kernel.domain.dtos import Actor
from backoffice_kernel.exceptions import ConfigurationError
from backoffice_services import EngineOptions, JWTIdentityProvider


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


MINIMAL = {
    "name": "unit",
    "database": {"url": "sqlite:///:memory:"},
    "identity": {"secret": "unit-test-secret-0123456789abcdef"},
}


class TestDefaultSet:

    def test_default_config_loads(self):
        config = get_active_config(environ={})
        assert config.name == "default"
        assert config.codes.width == 4
        assert config.workflow.ap_due_days == 30
        assert config.identity.issuer == "cdi-fe-app"
        assert len(config.checksum) == 64

    def test_trace_logged(self, captured_logs):
        config = get_active_config(environ={})
        traces = [r for r in captured_logs() if r["message"] == "BACKOFFICE_CONFIG_TRACE"]
        assert traces[0]["checksum"] == config.checksum


class TestEnvironmentOverrides:

    def test_overrides_applied(self):
        config = get_active_config(
            environ={
                "BACKOFFICE_DATABASE_URL": "postgresql+psycopg2://u:p@db/backoffice",
                "BACKOFFICE_JWT_SECRET": "from-env",
                "BACKOFFICE_LOG_LEVEL": "DEBUG",
            }
        )
        assert config.database.url == "postgresql+psycopg2://u:p@db/backoffice"
        assert config.identity.secret == "from-env"
        assert config.logging.level == "DEBUG"

    def test_empty_override_ignored(self):
        merged = apply_env_overrides(MINIMAL, {"BACKOFFICE_JWT_SECRET": ""})
        assert merged["identity"]["secret"] == "unit-test-secret-0123456789abcdef"

    def test_source_not_mutated(self):
        apply_env_overrides(MINIMAL, {"BACKOFFICE_JWT_SECRET": "other"})
        assert MINIMAL["identity"]["secret"] == "unit-test-secret-0123456789abcdef"

    def test_secret_excluded_from_checksum(self):
        other = {**MINIMAL, "identity": {"secret": "different-secret-0123456789abcdef"}}
        assert compute_checksum(MINIMAL) == compute_checksum(other)


class TestValidation:

    def test_minimal_file(self, tmp_path):
        config = get_active_config(_write(tmp_path, MINIMAL), environ={})
        assert config.workflow.page_size == 20

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml", environ={})

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("database: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            get_active_config(path, environ={})

    def test_missing_section(self):
        with pytest.raises(ConfigurationError, match="identity"):
            parse_config({"database": {"url": "sqlite://"}})

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="Unknown keys"):
            parse_config({**MINIMAL, "codes": {"width": 4, "padding": "0"}})

    def test_non_positive_value(self):
        with pytest.raises(ConfigurationError, match="ap_due_days"):
            parse_config({**MINIMAL, "workflow": {"ap_due_days": 0}})

    def test_page_size_above_max(self):
        with pytest.raises(ConfigurationError, match="max_page_size"):
            parse_config({**MINIMAL, "workflow": {"page_size": 200, "max_page_size": 100}})

    def test_empty_secret(self):
        with pytest.raises(ConfigurationError, match="secret"):
            parse_config({**MINIMAL, "identity": {"secret": ""}})


class TestConsumers:

    def test_engine_options_from_config(self):
        config = parse_config(
            {**MINIMAL, "codes": {"width": 5}, "workflow": {"ap_due_days": 45, "max_page_size": 50}}
        )
        options = EngineOptions.from_config(config)
        assert options == EngineOptions(code_width=5, ap_due_days=45, page_size=20, max_page_size=50)

    def test_identity_from_config(self, deterministic_clock):
        config = parse_config(MINIMAL)
        provider = JWTIdentityProvider.from_config(config, clock=deterministic_clock)
        token = provider.issue(Actor("EMP001", "Budi"))
        assert provider.verify(token).code == "EMP001"
