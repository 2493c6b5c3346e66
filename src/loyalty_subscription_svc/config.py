import os


class Settings:
    """
    Runtime configuration read from environment variables.
    """

    def __init__(self) -> None:
        self.database_url = os.getenv('DATABASE_URL', 'sqlite:///./subscriptions.db')
        self.stripe_api_key = os.getenv('STRIPE_API_KEY')
        self.stripe_endpoint_secret = os.getenv('STRIPE_ENDPOINT_SECRET')
        self.log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.stripe_max_retries = int(os.getenv('STRIPE_MAX_RETRIES', '3'))
        self.stripe_retry_delay = float(os.getenv('STRIPE_RETRY_DELAY', '1.0'))


def get_settings() -> Settings:
    return Settings()
