"""
Configuration Module for Chow Bot
=================================

Settings for the Chow Bot application, read once from the environment at
import time. Modules import the constants they need from here.

Configuration Categories:
-------------------------
- **Storage**: Which persistence backend serves users, carts, orders and the
  menu. The SQL backend is durable; the memory backend is a process-wide
  fallback for development or when the database is unreachable.

- **Payments**: Paystack credentials, timeouts and the client polling cadence
  advertised to the chat widget.

- **Rate Limiting**: Controls API request throttling to prevent abuse.

- **Input Validation**: Maximum length of an option token.

- **CORS Settings**: Cross-Origin Resource Sharing configuration for frontend
  integration. Defaults allow all origins for development.

Environment Variables:
----------------------
- DATABASE_URL: SQLAlchemy URL (unset -> in-memory storage)
- STORAGE_BACKEND: "auto", "sql" or "memory" (default: "auto")
- PAYSTACK_SECRET_KEY / PAYSTACK_PUBLIC_KEY: Provider credentials
- PAYMENT_ALLOW_SIMULATION: Allow the simulated payment fallback (default: "true")
- RATE_LIMIT_CHAT: Chat endpoint rate limit (default: "30 per minute")
- MAX_MESSAGE_LENGTH: Longest token the chat treats as an option (default: 200)
- CORS_ORIGINS: Comma-separated allowed origins (default: "*")

Usage:
------
    from chow_bot.config import (
        CURRENCY_SYMBOL,
        PAYMENT_POLL_INTERVAL_SECONDS,
        MAX_MESSAGE_LENGTH,
    )
"""

import os
from typing import List


# =============================================================================
# Storage Configuration
# =============================================================================
# "auto" uses the SQL backend when DATABASE_URL is set and reachable, and
# falls back to the in-memory backend otherwise.

DATABASE_URL: str = os.getenv("DATABASE_URL", "")
STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "auto").strip().lower()

# Seed the default menu at startup. Seeding is skipped when items exist.
SEED_MENU_ON_STARTUP: bool = os.getenv("SEED_MENU_ON_STARTUP", "true").lower() == "true"

# Upper bound on optimistic-concurrency retries for a single order write
ORDER_UPDATE_MAX_ATTEMPTS: int = int(os.getenv("ORDER_UPDATE_MAX_ATTEMPTS", "5"))


# =============================================================================
# Payment Configuration
# =============================================================================
# The provider is only used when both keys are present. Without them every
# payment goes through the local simulation flow.

PAYSTACK_SECRET_KEY: str = os.getenv("PAYSTACK_SECRET_KEY", "")
PAYSTACK_PUBLIC_KEY: str = os.getenv("PAYSTACK_PUBLIC_KEY", "")
PAYSTACK_BASE_URL: str = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")

# Seconds before a single provider HTTP call is abandoned
PAYMENT_PROVIDER_TIMEOUT: int = int(os.getenv("PAYMENT_PROVIDER_TIMEOUT", "10"))

PAYMENT_ALLOW_SIMULATION: bool = os.getenv("PAYMENT_ALLOW_SIMULATION", "true").lower() == "true"

# Client polling cadence. When the ceiling is reached the client stops
# polling; the payment is neither cancelled nor failed.
PAYMENT_POLL_INTERVAL_SECONDS: int = int(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", "3"))
PAYMENT_POLL_TIMEOUT_SECONDS: int = int(os.getenv("PAYMENT_POLL_TIMEOUT_SECONDS", "300"))

# Absolute base used for callback URLs; empty means "derive from the request"
PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

# The provider requires an e-mail; sessions are anonymous so one is synthesized
CUSTOMER_EMAIL_DOMAIN: str = os.getenv("CUSTOMER_EMAIL_DOMAIN", "restaurant.com")


def is_provider_configured() -> bool:
    """Check if the payment provider credentials are present."""
    return bool(PAYSTACK_SECRET_KEY and PAYSTACK_PUBLIC_KEY)


# =============================================================================
# Display Configuration
# =============================================================================

CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "₦")


# =============================================================================
# Rate Limiting Configuration
# =============================================================================
# Rate limit format: "X per Y" where Y is second, minute, hour, or day

RATE_LIMIT_CHAT: str = os.getenv("RATE_LIMIT_CHAT", "30 per minute")
RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"


def get_rate_limit_chat() -> str:
    """
    Return the current chat rate limit.

    This function allows dynamic override in tests without modifying
    the module-level constant.
    """
    return RATE_LIMIT_CHAT


# =============================================================================
# Input Validation Configuration
# =============================================================================
# Option tokens are short strings echoed back from offered options.

MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "200"))


# =============================================================================
# CORS Configuration
# =============================================================================
# Format: comma-separated list of origins, e.g., "https://myshop.com,https://admin.myshop.com"
# Default "*" allows all origins (suitable for development only)

_cors_origins_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in _cors_origins_env.split(",")
    if origin.strip()
] or ["*"]
