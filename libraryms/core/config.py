from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str

    # If DEV and you hit SSL cert issues on Windows, set DB_SSL_VERIFY=false in .env
    DB_SSL_VERIFY: bool = True

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12

    ENV: str = "dev"  # "dev" or "prod"

    # --- LIBRARIAN SEED (created on startup if missing) ---
    LIBRARIAN_EMAIL: str | None = None
    LIBRARIAN_PASSWORD: str | None = None
    LIBRARIAN_NAME: str | None = "Head Librarian"
    SEED_DEMO_USERS: bool = False

    # --- CIRCULATION ---
    DEFAULT_LOAN_DAYS: int = 14
    PASSWORD_MIN_LENGTH: int = 6

    # --- RATE LIMITING ---
    RATE_LIMIT_ENABLED: bool = True
    LOGIN_RATE_LIMIT: str = "10/minute"
    REDIS_URL: str | None = None

    # --- SCHEDULED JOBS (cron hits /api/jobs/... with ?secret_key=) ---
    JOB_SECRET: str | None = None

    NOTIFICATION_FEED_SIZE: int = 100
    FRONTEND_URL: str = "http://localhost:5173"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
