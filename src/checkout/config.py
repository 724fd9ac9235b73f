"""Engine settings for the checkout domain.

Protean's own configuration (providers, brokers, event processing) is selected
through ``PROTEAN_ENV``. The knobs below tune the cart engine itself and are
read from ``CHECKOUT_*`` environment variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CheckoutSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHECKOUT_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # --- Transactions ---
    transaction_max_attempts: int = Field(default=3, ge=1)
    transaction_backoff_seconds: float = Field(default=0.01, ge=0.0)

    # --- Sales channels ---
    validate_sales_channels: bool = True
    default_sales_channel_id: str | None = None

    # --- Payments ---
    partial_payment_sessions: bool = False
    stamp_payment_authorization: bool = True

    # --- Totals ---
    rounding_policy: Literal["half_up", "half_even", "floor"] = "half_up"


@lru_cache
def get_settings() -> CheckoutSettings:
    """Return the process-wide settings, loaded once from the environment."""
    return CheckoutSettings()
