"""
Start-up wiring from a configuration file to a working gateway.
"""

import pytest
import yaml

from backoffice_config import get_active_config
from backoffice_kernel.db import engine as engine_module
from backoffice_modules import bootstrap
from backoffice_services import BackofficeGateway, JWTIdentityProvider


@pytest.fixture
def isolated_engine(db, monkeypatch):
    """Let bootstrap replace the module-level engine for one test only."""
    monkeypatch.setattr(engine_module, "_engine", engine_module._engine)
    monkeypatch.setattr(engine_module, "_SessionFactory", engine_module._SessionFactory)
    yield
    engine_module.get_engine().dispose()


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "dev.yaml"
    path.write_text(yaml.safe_dump({
        "name": "dev",
        "database": {"url": f"sqlite:///{tmp_path / 'dev.db'}", "lock_timeout_ms": 2000},
        "codes": {"width": 5},
        "identity": {"secret": "development-secret-0123456789abcdef"},
    }))
    return get_active_config(path, environ={})


class TestBootstrap:

    def test_gateway_over_configured_store(self, isolated_engine, config, deterministic_clock, actor, tmp_path):
        gateway = bootstrap(config, clock=deterministic_clock, create_tables=True)
        assert isinstance(gateway, BackofficeGateway)
        assert engine_module.get_engine().url.database == str(tmp_path / "dev.db")

        token = JWTIdentityProvider.from_config(config, clock=deterministic_clock).issue(actor)
        created = gateway.create_document(token, "sales_order", {"customer_name": "PT Sinar Jaya"})
        assert created.code == "SO-2025-00001"
        assert gateway.get_document(token, "sales_order", created.code).status == "submitted"
