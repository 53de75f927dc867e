from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Blog Backend"
    DATABASE_URL: str = "sqlite:///./blog.db"
    DB_CONNECT_RETRIES: int = 5
    DB_RETRY_INTERVAL: int = 5

    # Redis cache for public reads
    REDIS_URL: str = "redis://cache:6379/0"
    CACHE_EXPIRE: int = 3600

    # Only this address may sign in through the OAuth provider
    ADMIN_EMAIL: str = "admin@example.com"
    SECRET_KEY: str = "supersecretkey_change_me_in_production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Listing and display
    DEFAULT_PAGE_SIZE: int = 10
    POSTS_PER_PAGE: int = 9
    WORDS_PER_MINUTE: int = 200
    SITE_URL: str = "http://localhost:8000"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
