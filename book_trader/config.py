"""
config.py — Environment-driven configuration for book-trader.

All settings have defaults, so a local market only needs
BOOKTRADER_SETTLEMENT_URL pointed at the settlement authority.
"""

import os

from pydantic import BaseModel, field_validator


class TraderConfig(BaseModel):
    """
    Configuration for one trading agent.

    Reads from environment variables by default:
        BOOKTRADER_SETTLEMENT_URL — settlement authority base URL
        BOOKTRADER_API_KEY        — bearer token for the authority (optional)
        BOOKTRADER_HTTP_TIMEOUT   — HTTP timeout in seconds (default: 10)
        BOOKTRADER_REPLY_TIMEOUT  — negotiation reply deadline in seconds (default: 5)
        BOOKTRADER_TICK_INTERVAL  — goal scan period in seconds (default: 1)
        BOOKTRADER_ROLE           — directory role of trading peers (default: book-trader)
        BOOKTRADER_SELL_DISCOUNT  — liquidation discount off catalog price (default: 20)
        BOOKTRADER_BUY_MARKDOWN   — margin kept below a goal's value (default: 10)
        BOOKTRADER_MAX_PREMIUM    — upper bound of the sell-side jitter (default: 10)
        BOOKTRADER_RETRIES        — settlement attempts on transient errors (default: 3)
    """

    settlement_url: str = os.getenv(
        "BOOKTRADER_SETTLEMENT_URL", "http://localhost:8700"
    )
    api_key: str = os.getenv("BOOKTRADER_API_KEY", "")
    http_timeout: int = int(os.getenv("BOOKTRADER_HTTP_TIMEOUT", "10"))
    reply_timeout: float = float(os.getenv("BOOKTRADER_REPLY_TIMEOUT", "5"))
    tick_interval: float = float(os.getenv("BOOKTRADER_TICK_INTERVAL", "1"))
    trading_role: str = os.getenv("BOOKTRADER_ROLE", "book-trader")
    sell_discount: float = float(os.getenv("BOOKTRADER_SELL_DISCOUNT", "20"))
    buy_markdown: float = float(os.getenv("BOOKTRADER_BUY_MARKDOWN", "10"))
    max_premium: int = int(os.getenv("BOOKTRADER_MAX_PREMIUM", "10"))
    retries: int = int(os.getenv("BOOKTRADER_RETRIES", "3"))

    @field_validator("http_timeout")
    @classmethod
    def validate_http_timeout(cls, v: int) -> int:
        if v < 1 or v > 300:
            raise ValueError("http_timeout must be between 1 and 300")
        return v

    @field_validator("reply_timeout", "tick_interval")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("reply_timeout and tick_interval must be positive")
        return v

    @field_validator("max_premium")
    @classmethod
    def validate_max_premium(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_premium must be at least 1")
        return v

    @field_validator("retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("retries must be between 1 and 10")
        return v
