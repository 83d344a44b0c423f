"""Configuration management for tenant-billing.

This module provides configuration with environment variable support,
validation, and type safety using Pydantic Settings.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tenant_billing.core.types import DocumentKind

if TYPE_CHECKING:
    from tenant_billing.numbering.formats import NumberFormat


class BillingConfig(BaseSettings):
    """Main configuration for tenant-billing.

    All settings can be configured via environment variables with BILLING_ prefix.
    Supports .env file loading for local development.

    Example:
        ```python
        # Using environment variables
        # BILLING_DATABASE_URL=postgresql+asyncpg://...
        # BILLING_SEQUENCE_BACKEND=redis
        # BILLING_REDIS_URL=redis://localhost:6379/0

        config = BillingConfig()

        # Or programmatically
        config = BillingConfig(
            database_url="postgresql+asyncpg://localhost/billing",
            invoice_number_prefix="INV",
        )
        ```

    Attributes:
        database_url: Document store connection URL
        sequence_backend: Where per-tenant number counters live
        default_payment_terms_days: Days between issue date and due date
        number_max_retries: Duplicate-number retries before giving up
    """

    model_config = SettingsConfigDict(
        env_prefix="BILLING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def __str__(self) -> str:
        """String representation with masked secrets."""
        result = super().__repr__()
        # Mask passwords in URLs
        return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", result)

    ##########################
    # Database Configuration #
    ##########################

    database_url: str = Field(
        default="sqlite+aiosqlite:///:memory:",
        description="Document store connection URL (async SQLAlchemy driver)",
    )

    database_pool_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Database connection pool size",
    )

    database_max_overflow: int = Field(
        default=20,
        ge=0,
        le=200,
        description="Max overflow connections beyond pool size",
    )

    database_echo: bool = Field(
        default=False,
        description="Enable SQL query logging (use only in development)",
    )

    ###########################
    # Sequence Configuration  #
    ###########################

    sequence_backend: Literal["memory", "database", "redis"] = Field(
        default="database",
        description="Backend holding per-tenant document number counters",
    )

    redis_url: str | None = Field(
        default=None,
        description="Redis connection URL (required for the redis sequence backend)",
    )

    invoice_number_prefix: str = Field(default="INV", description="Invoice number prefix")
    estimate_number_prefix: str = Field(default="EST", description="Estimate number prefix")
    project_number_prefix: str = Field(default="PRJ", description="Project number prefix")

    document_number_base: int = Field(
        default=10001,
        ge=1,
        description="First number issued for invoices and estimates",
    )

    project_number_base: int = Field(
        default=1001,
        ge=1,
        description="First number issued for projects",
    )

    project_number_padding: int = Field(
        default=5,
        ge=0,
        le=12,
        description="Zero padding applied to project numbers",
    )

    number_max_retries: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Attempts to find a free number before raising a conflict",
    )

    transition_max_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Optimistic-lock retries for status transitions",
    )

    ##############################
    # Document Defaults          #
    ##############################

    default_payment_terms_days: int = Field(
        default=30,
        ge=0,
        le=3650,
        description="Days from issue date to due date / estimate expiry",
    )

    default_currency: str = Field(default="USD", description="ISO 4217 currency code")

    payment_token_bytes: int = Field(
        default=16,
        ge=8,
        le=64,
        description="Random bytes in a public payment token",
    )

    ##############################
    # Payment Reminders          #
    ##############################

    reminder_cooldown_days: int = Field(default=3, ge=0, description="Days between reminders")
    reminder_max_count: int = Field(default=5, ge=1, description="Reminders per invoice")
    reminder_due_soon_days: int = Field(
        default=7, ge=0, description="Window for 'due soon' reminders"
    )

    ##############
    # Validators #
    ##############

    @field_validator("database_url", mode="before")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Normalise the URL and warn about synchronous drivers.

        Args:
            v: Database URL to validate

        Returns:
            Validated, normalised URL string
        """
        import warnings

        from tenant_billing.utils.db_compat import is_async_url

        url_str = str(v).rstrip("/")
        if not is_async_url(url_str):
            warnings.warn(
                "Database URL uses a synchronous driver scheme. "
                "Use an async driver instead (e.g. postgresql+asyncpg, sqlite+aiosqlite).",
                stacklevel=4,
            )
        return url_str

    @field_validator("invoice_number_prefix", "estimate_number_prefix", "project_number_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Validate a document number prefix.

        Raises:
            ValueError: If prefix format is invalid
        """
        from tenant_billing.utils.validation import validate_number_prefix

        if not validate_number_prefix(v):
            raise ValueError(
                "number prefixes must start with an uppercase letter and contain only "
                "uppercase letters and digits (max 10 characters)"
            )
        return v

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, v: str) -> str:
        from tenant_billing.utils.validation import validate_currency

        v = v.upper()
        if not validate_currency(v):
            raise ValueError(f"unsupported currency: {v!r}")
        return v

    ##################
    # Helper Methods #
    ##################

    def number_format(self, kind: DocumentKind) -> NumberFormat:
        """Return the numbering format for a document kind.

        Example:
            ```python
            config.number_format(DocumentKind.PROJECT).render(1001)
            # Returns: "PRJ-01001"
            ```
        """
        from tenant_billing.numbering.formats import NumberFormat

        if kind == DocumentKind.INVOICE:
            return NumberFormat(prefix=self.invoice_number_prefix, base=self.document_number_base)
        if kind == DocumentKind.ESTIMATE:
            return NumberFormat(prefix=self.estimate_number_prefix, base=self.document_number_base)
        return NumberFormat(
            prefix=self.project_number_prefix,
            base=self.project_number_base,
            padding=self.project_number_padding,
        )

    def model_post_init(self, __context: object) -> None:
        """Run cross-field validation after model construction."""
        self.validate_configuration()

    def validate_configuration(self) -> None:
        """Validate complete configuration consistency.

        Raises:
            ValueError: If configuration is inconsistent
        """
        if self.sequence_backend == "redis" and not self.redis_url:
            raise ValueError("sequence_backend='redis' requires redis_url to be set")

        prefixes = [
            self.invoice_number_prefix,
            self.estimate_number_prefix,
            self.project_number_prefix,
        ]
        if len(set(prefixes)) != len(prefixes):
            raise ValueError("invoice, estimate and project number prefixes must differ")


__all__ = ["BillingConfig"]
