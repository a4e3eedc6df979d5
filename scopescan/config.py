from pydantic import BaseModel
from pydantic_settings import BaseSettings


class PriceRate(BaseModel):
    low: float
    high: float


class PricingConfig(BaseModel):
    """Tunable numbers used by scope tiers and pricing guardrails."""

    painting_price_per_sqft: dict[str, PriceRate] = {
        "spot_repair": PriceRate(low=3, high=5),
        "one_wall": PriceRate(low=4, high=6),
        "entire_room": PriceRate(low=3, high=5),
        "entire_house": PriceRate(low=2.5, high=4),
    }
    default_sqft: dict[str, float] = {
        "spot_repair": 20,
        "one_wall": 100,
        "entire_room": 120,
        "entire_house": 2000,
    }
    labor_floor_low: int = 150
    labor_floor_high: int = 200
    large_scope_sqft: float = 200

    # Painting tier price ranges when square footage is known
    painting_base_price_per_sqft: float = 4
    tier_multipliers: dict[str, float] = {"minimum": 0.5, "recommended": 1.0, "premium": 1.5}
    tier_price_spread_low: float = 0.8
    tier_price_spread_high: float = 1.2

    color_change_factor: float = 1.2
    tall_ceiling_factor: float = 1.3
    vaulted_ceiling_factor: float = 1.6
    include_ceiling_factor: float = 1.25


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./scopescan.sqlite3"
    openai_api_key: str = ""
    openai_vision_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    google_vision_api_key: str = ""
    label_min_confidence: float = 70
    label_max_results: int = 20
    http_timeout_seconds: float = 60.0

    lock_expiry_seconds: int = 120
    claim_batch_size: int = 5
    max_attempts: int = 5

    cors_origins: list[str] = ["http://localhost:8000"]
    pricing: PricingConfig = PricingConfig()

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }


settings = Settings()
