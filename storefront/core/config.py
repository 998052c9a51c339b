from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Storefront API"
    DATABASE_URL: str = "sqlite:///./storefront.db"
    SECRET_KEY: str = "supersecretkey_change_me_in_production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7 # 1 week

    # Headless content store (products, variants, stock, prices)
    CONTENT_STORE_PROJECT_ID: str = ""
    CONTENT_STORE_DATASET: str = "production"
    CONTENT_STORE_API_VERSION: str = "2023-01-01"
    CONTENT_STORE_TOKEN: str = ""
    CONTENT_STORE_TIMEOUT: float = 10.0
    CONTENT_STORE_MAX_RETRIES: int = 3
    CONTENT_STORE_RETRY_BASE_DELAY: float = 1.0

    # Razorpay
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    PAYMENT_CURRENCY: str = "USD"
    SHIPPING_FLAT_RATE: float = 15.00
    DEFAULT_COUNTRY_CODE: str = "US"

    # Cart / favorites lifecycle
    CART_EXPIRY_DAYS: int = 30
    FAVORITES_EXPIRY_DAYS: int = 90
    SYNC_INTERVAL_SECONDS: float = 60.0
    DEVICE_STORAGE_DIR: str = "./device_storage"
    SESSION_IDLE_SECONDS: float = 1800.0
    SESSION_SWEEP_INTERVAL_SECONDS: float = 60.0

    LOG_LEVEL: str = "INFO"

    @property
    def CONTENT_STORE_QUERY_URL(self) -> str:
        return (
            f"https://{self.CONTENT_STORE_PROJECT_ID}.api.sanity.io"
            f"/v{self.CONTENT_STORE_API_VERSION}/data/query/{self.CONTENT_STORE_DATASET}"
        )

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
