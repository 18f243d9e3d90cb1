"""
Runtime configuration.

Values come from the environment (optionally a .env file) and are loaded
once into a Settings object that is passed to whatever needs it.
"""

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MODELSLAB_ENDPOINT = "https://modelslab.com/api/v6/llm/uncensored_chat"

# Provider-specific env vars checked when LLM_API_KEY is not set
PROVIDER_KEY_VARS = {
    "modelslab": "MODELS_LAB_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


class Settings(BaseModel):
    """Process configuration for the service, the CLI and the tests."""

    database_url: str = "sqlite:///code_roast.db"

    llm_provider: Literal["modelslab", "openai", "anthropic"] = "modelslab"
    llm_endpoint: str = DEFAULT_MODELSLAB_ENDPOINT
    llm_api_key: Optional[str] = None
    llm_model: Optional[str] = None
    llm_timeout_seconds: float = Field(30.0, gt=0)

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_pro_price_id: Optional[str] = None
    stripe_team_price_id: Optional[str] = None

    session_days: int = Field(7, ge=1)
    free_monthly_reviews: int = Field(10, ge=0)
    api_key_prefix: str = "acr_"

    def price_plans(self) -> dict:
        """Map Stripe price ids to plan names."""
        plans = {}
        if self.stripe_pro_price_id:
            plans[self.stripe_pro_price_id] = "pro"
        if self.stripe_team_price_id:
            plans[self.stripe_team_price_id] = "team"
        return plans


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build Settings from the environment, reading a .env file first."""
    load_dotenv(env_file, override=False)

    provider = os.getenv("LLM_PROVIDER", "modelslab").lower()
    api_key = os.getenv("LLM_API_KEY") or os.getenv(PROVIDER_KEY_VARS.get(provider, ""), None)

    values = {
        "llm_provider": provider,
        "llm_api_key": api_key,
        "llm_model": os.getenv("LLM_MODEL"),
        "stripe_secret_key": os.getenv("STRIPE_SECRET_KEY"),
        "stripe_webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET"),
        "stripe_pro_price_id": os.getenv("STRIPE_PRO_PRICE_ID"),
        "stripe_team_price_id": os.getenv("STRIPE_TEAM_PRICE_ID"),
    }

    # Only override defaults for variables that are actually set
    optional = {
        "database_url": "DATABASE_URL",
        "llm_endpoint": "LLM_ENDPOINT",
        "llm_timeout_seconds": "LLM_TIMEOUT_SECONDS",
        "session_days": "SESSION_DAYS",
        "free_monthly_reviews": "FREE_MONTHLY_REVIEWS",
        "api_key_prefix": "API_KEY_PREFIX",
    }
    for field, var in optional.items():
        raw = os.getenv(var)
        if raw:
            values[field] = raw

    return Settings(**values)
