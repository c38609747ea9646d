import os


class Settings:
    """Application settings that read environment variables dynamically."""

    @property
    def app_name(self) -> str:
        return "Newsly"

    @property
    def environment(self) -> str:
        env = os.getenv("ENV", "").lower()
        if env == "production" or os.getenv("PORT"):
            return "production"
        return "development"

    @property
    def cors_origin(self) -> str:
        return os.getenv("CORS_ORIGIN", "http://localhost:3000")

    @property
    def app_url(self) -> str:
        # Base URL used for links embedded in emails
        return os.getenv("APP_URL", "http://localhost:3000").rstrip("/")

    @property
    def cron_secret(self) -> str:
        return os.getenv("CRON_SECRET", "")

    @property
    def admin_api_key(self) -> str:
        return os.getenv("ADMIN_API_KEY", "")

    @property
    def resend_api_key(self) -> str:
        return os.getenv("RESEND_API_KEY", "")

    @property
    def resend_from_email(self) -> str:
        return os.getenv("RESEND_FROM_EMAIL", "Newsly <newsletter@newsly.in>")

    @property
    def resend_reply_to(self) -> str:
        return os.getenv("RESEND_REPLY_TO", "")

    @property
    def openai_api_key(self) -> str:
        return os.getenv("OPENAI_API_KEY", "")

    @property
    def openai_model(self) -> str:
        return os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    @property
    def newsletter_batch_size(self) -> int:
        try:
            size = int(os.getenv("NEWSLETTER_BATCH_SIZE", "50"))
        except ValueError:
            return 50
        return size if size > 0 else 50

    @property
    def stripe_secret_key(self) -> str:
        return os.getenv("STRIPE_SECRET_KEY", "")

    @property
    def stripe_webhook_secret(self) -> str:
        return os.getenv("STRIPE_WEBHOOK_SECRET", "")

    @property
    def stripe_pro_price_id(self) -> str:
        return os.getenv("STRIPE_PRO_MONTHLY_PRICE_ID", "")

    @property
    def stripe_premium_price_id(self) -> str:
        return os.getenv("STRIPE_PREMIUM_MONTHLY_PRICE_ID", "")

    @property
    def finlight_api_key(self) -> str:
        return os.getenv("FINLIGHT_API_KEY", "")

    @property
    def finlight_base_url(self) -> str:
        return os.getenv("FINLIGHT_BASE_URL", "https://api.finlight.me").rstrip("/")

    @property
    def phonepe_merchant_id(self) -> str:
        return os.getenv("PHONEPE_MERCHANT_ID", "")

    @property
    def phonepe_salt_key(self) -> str:
        return os.getenv("PHONEPE_SALT_KEY", "")

    @property
    def phonepe_salt_index(self) -> str:
        return os.getenv("PHONEPE_SALT_INDEX", "1")

    @property
    def phonepe_base_url(self) -> str:
        if os.getenv("PHONEPE_ENV", "").lower() == "production":
            return "https://api.phonepe.com/apis/hermes"
        return "https://api-preprod.phonepe.com/apis/pg-sandbox"

    @property
    def use_mock_payment(self) -> bool:
        return os.getenv("USE_MOCK_PAYMENT", "true").lower() != "false"


# Singleton instance (no caching of values, properties read env on access)
_settings_instance = None


def get_settings() -> Settings:
    """Return the Settings instance. Values are read from the environment on access."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def clear_settings_cache():
    """Drop the settings instance so the next call builds a fresh one."""
    global _settings_instance
    _settings_instance = None
