from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Database
    PGHOST: str = "localhost"
    PGDATABASE: str = "railpass"
    PGUSER: str = "railpass"
    PGPASSWORD: str = ""
    PGSSLMODE: str = "prefer"
    DATABASE_URL: Optional[str] = None  # overrides the PG* fields when set
    AUTO_CREATE_TABLES: bool = True

    # Security
    SECRET_KEY: str  # HMAC key for ticket hashes

    # Application
    PROJECT_NAME: str = "RailPass Booking Core"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Booking
    STEP_TIMEOUT_SECONDS: float = 5.0
    SEAT_HOLD_TTL_SECONDS: int = 900
    READ_RETRY_ATTEMPTS: int = 3
    READ_RETRY_BACKOFF_SECONDS: float = 0.2
    ONE_TICKET_PER_USER_PER_SCHEDULE: bool = True
    MAINTENANCE_INTERVAL_SECONDS: int = 60  # 0 disables the background sweep

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+psycopg2://{self.PGUSER}:{self.PGPASSWORD}@{self.PGHOST}/{self.PGDATABASE}?sslmode={self.PGSSLMODE}"

    @property
    def cors_origins(self) -> list:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
