"""
BackofficeConfig schema.

Frozen dataclasses for every configuration section.  YAML files are parsed
into these types by ``loader.py``; nothing else constructs them from raw
dicts.  Each section validates its own values in ``__post_init__``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from backoffice_kernel.exceptions import ConfigurationError


def _require_positive(section: str, **values: int) -> None:
    for name, value in values.items():
        if value <= 0:
            raise ConfigurationError(f"{section}.{name} must be positive, got {value}")


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    lock_timeout_ms: int = 5000
    statement_timeout_ms: int = 30000

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigurationError("database.url is required")
        _require_positive(
            "database",
            pool_size=self.pool_size,
            pool_timeout=self.pool_timeout,
            lock_timeout_ms=self.lock_timeout_ms,
            statement_timeout_ms=self.statement_timeout_ms,
        )

    def engine_kwargs(self) -> dict[str, int | bool]:
        return {
            "echo": self.echo,
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "lock_timeout_ms": self.lock_timeout_ms,
            "statement_timeout_ms": self.statement_timeout_ms,
        }


@dataclass(frozen=True)
class CodeConfig:
    """Document code formatting: ``{prefix}-{year}-{sequence:0{width}d}``."""

    width: int = 4

    def __post_init__(self) -> None:
        _require_positive("codes", width=self.width)


@dataclass(frozen=True)
class WorkflowConfig:
    ap_due_days: int = 30
    page_size: int = 20
    max_page_size: int = 100

    def __post_init__(self) -> None:
        _require_positive(
            "workflow",
            ap_due_days=self.ap_due_days,
            page_size=self.page_size,
            max_page_size=self.max_page_size,
        )
        if self.page_size > self.max_page_size:
            raise ConfigurationError("workflow.page_size exceeds workflow.max_page_size")


@dataclass(frozen=True)
class IdentityConfig:
    secret: str
    algorithm: str = "HS256"
    issuer: str = "cdi-fe-app"
    expires_days: int = 7
    leeway_seconds: int = 0

    def __post_init__(self) -> None:
        if not self.secret:
            raise ConfigurationError("identity.secret is required")
        _require_positive("identity", expires_days=self.expires_days)


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class BackofficeConfig:
    """The complete runtime configuration."""

    name: str
    database: DatabaseConfig
    identity: IdentityConfig
    codes: CodeConfig = field(default_factory=CodeConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
