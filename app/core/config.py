from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Casaora API"
    # Comma-separated origins for CORS (e.g. https://casaora.co,https://admin.casaora.co). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    AUTH_COOKIE_NAME: str = "access_token"
    AUTH_COOKIE_SECURE: bool = False

    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and Supabase give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "no-reply@casaora.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""
    EMAIL_MAX_ATTEMPTS: int = 5

    # Expo push gateway; users without a push token only get the in-app row
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    NOTIFICATION_MAX_ATTEMPTS: int = 5

    CLIENT_BASE_URL: str = ""  # e.g. https://casaora.co - used in email links

    # Stripe (card payments, manual capture)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # PayPal Orders v2
    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_ENV: str = "sandbox"  # sandbox|production
    PAYPAL_WEBHOOK_ID: str = ""  # from the PayPal app's webhook settings; needed to verify deliveries

    PAYMENTS_SANDBOX: bool = False  # If True, skip real processor calls and return mock success (local dev)

    # Marketplace rules
    MIN_BOOKING_AMOUNT: int = 20000
    DEFAULT_CURRENCY: str = "COP"
    GPS_MAX_DISTANCE_METERS: int = 150
    BALANCE_CLEARANCE_HOURS: int = 24
    PAYOUT_TIMEZONE: str = "America/Bogota"
    PAYOUT_HOUR: int = 10
    INSTANT_PAYOUT_FEE_PERCENT: float = 1.5
    INSTANT_PAYOUT_MIN_AMOUNT: int = 50000
    INSTANT_PAYOUT_MAX_AMOUNT: int = 100_000_000
    INSTANT_PAYOUT_DAILY_LIMIT: int = 3  # per rolling 24h

    # Shared secret for the scheduler calling /cron/* in production
    CRON_SECRET: str = ""

    # Sanity CMS -> search index sync
    SANITY_PROJECT_ID: str = ""
    SANITY_DATASET: str = "production"
    SANITY_API_VERSION: str = "2024-01-01"
    SANITY_API_TOKEN: str = ""
    SANITY_WEBHOOK_SECRET: str = ""
    SEARCH_API_URL: str = ""  # e.g. http://localhost:7700
    SEARCH_API_KEY: str = ""

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


settings = Settings()
