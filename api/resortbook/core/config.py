"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "ResortBook"
    debug: bool = True
    log_level: str = "INFO"
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"

    # Database
    database_url: str = "postgresql+asyncpg://resortbook:resortbook@db:5432/resortbook"
    database_echo: bool = False

    # Auth
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 30
    jwt_algorithm: str = "HS256"

    # Email / SMTP
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_from: str = "bookings@resortbook.in"

    # Stripe (test mode)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    # HMAC key for the order|payment signature returned to the checkout page
    payment_signing_secret: str = "dev-payment-secret-change-in-production"
    currency: str = "inr"

    # Pricing (paise to avoid float issues)
    food_price_per_person_per_day_paise: int = 15000
    default_breakfast_price_paise: int = 20000
    pickup_fee_paise: int = 150000
    drop_fee_paise: int = 150000

    # Booking rules
    max_advance_booking_days: int = 365
    pending_hold_minutes: int = 0  # 0 = unpaid pending bookings hold the room indefinitely

    # Seed script only
    seed_admin_email: str | None = None
    seed_admin_password: str | None = None

    model_config = {"env_prefix": "RB_", "env_file": ".env", "extra": "ignore"}


settings = Settings()
