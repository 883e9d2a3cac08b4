"""
Application Configuration
"""
from pydantic_settings import BaseSettings
from typing import List, Optional
import warnings

INSECURE_KEYS = {
    "your-super-secret-key-change-in-production-min-32-chars",
    "change-me",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Branch Ledger API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False  # echoes SQL when True
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./ledger.db"
    DB_SCHEMA: Optional[str] = None  # e.g. "ims" on PostgreSQL
    # Bump when the live schema shape changes; clears cached column probes
    SCHEMA_VERSION: str = "1"

    # Token verification; tokens are issued by the auth service
    SECRET_KEY: str = "your-super-secret-key-change-in-production-min-32-chars"
    ALGORITHM: str = "HS256"

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"

    # Engine behaviour
    LIST_LIMIT: int = 200
    EXPENSE_PAYMENT_ENFORCE_CAP: bool = False

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def database_url(self) -> str:
        url = self.DATABASE_URL
        if url.startswith("file:"):
            return f"sqlite:///{url[5:]}"
        if url.startswith("postgres://"):
            # SQLAlchemy 2.x only accepts the postgresql:// scheme
            return "postgresql://" + url[len("postgres://"):]
        return url

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    def check_deployment(self) -> None:
        """Refuse unsafe production settings; warn about them elsewhere."""
        problems = []
        if self.SECRET_KEY in INSECURE_KEYS or len(self.SECRET_KEY) < 32:
            problems.append("SECRET_KEY is a default or shorter than 32 characters")
        if self.is_production and self.database_url.startswith("sqlite"):
            problems.append("SQLite ignores the row locks taken while posting balances")

        for problem in problems:
            if self.is_production:
                raise ValueError(f"Unsafe production setting: {problem}")
            warnings.warn(problem, UserWarning)

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
settings.check_deployment()
