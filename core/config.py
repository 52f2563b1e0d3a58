"""Billing configuration."""

import os

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator


class BillingConfig(BaseModel):
    """
    Billing policy settings.

    The cut-off day closes a billing period. Invoices dated after it bill the
    next installment, and the day after it (the 21st by default) starts a
    fresh balance computation.
    """

    cutoff_day: int = Field(
        default=20,
        description="Last day of the month that still bills the current period",
        ge=1,
        le=27,
    )

    # Invoice numbering
    invoice_number_prefix: str = Field(
        default="INV",
        description="Prefix for generated invoice numbers",
        min_length=1,
        max_length=10,
    )
    invoice_number_width: int = Field(
        default=4,
        description="Zero-padding width of the invoice sequence",
        ge=1,
        le=12,
    )

    # Dates
    business_timezone: str = Field(
        default="Asia/Kolkata",
        description="IANA timezone used to decide today's invoice date",
    )

    # Concurrency
    invoice_lock_ttl_seconds: int = Field(
        default=30,
        description="Expiry of the per-enrollment invoice creation lock",
        ge=1,
        le=300,
    )

    @field_validator("business_timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Reject timezone names the zoneinfo database does not know."""
        try:
            ZoneInfo(value)
        except (ValueError, ZoneInfoNotFoundError):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @property
    def reset_day(self) -> int:
        """Day of month on which balances and arrears restart."""
        return self.cutoff_day + 1

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """
        Build config from CHITFUND_* environment variables.

        Unset variables keep their defaults. Values are validated as usual,
        so a bad setting fails at startup.
        """
        env_fields = {
            "cutoff_day": "CHITFUND_CUTOFF_DAY",
            "invoice_number_prefix": "CHITFUND_INVOICE_PREFIX",
            "invoice_number_width": "CHITFUND_INVOICE_WIDTH",
            "business_timezone": "CHITFUND_TIMEZONE",
            "invoice_lock_ttl_seconds": "CHITFUND_INVOICE_LOCK_TTL",
        }
        values = {
            field: os.environ[var] for field, var in env_fields.items() if var in os.environ
        }
        return cls.model_validate(values)
