"""Configuration management for the tally service."""
from pydantic_settings import BaseSettings


DEFAULT_POSITIONS = [
    {"key": "president", "title": "Prezidents"},
    {"key": "vice_president", "title": "Viceprezidents"},
    {"key": "min_tech", "title": "Tehnikas ministrs"},
    {"key": "min_media", "title": "Mēdiju ministrs"},
    {"key": "min_art", "title": "Mākslas ministrs"},
    {"key": "min_culture", "title": "Kultūras ministrs"},
    {"key": "min_internal", "title": "Iekšlietu ministrs"},
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Service configuration
    SERVICE_NAME: str = "tally-api"
    API_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # PostgreSQL configuration
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "tally_db"
    POSTGRES_USER: str = "tally_user"
    POSTGRES_PASSWORD: str = "tally_pass"

    # Connection pool
    POSTGRES_POOL_MIN_SIZE: int = 2
    POSTGRES_POOL_MAX_SIZE: int = 10

    # Shared admin password (X-Admin-Pass header or ?admin= query)
    ADMIN_PASS: str = "change-me"

    # Candidate import
    CANDIDATES_CSV_PATH: str = "data/candidates.csv"

    # Positions inserted on first start only
    SEED_POSITIONS: list = DEFAULT_POSITIONS

    # Rate limiting for admin mutations
    RATE_LIMIT: str = "100/second"

    # CORS settings
    CORS_ORIGINS: list = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def postgres_dsn(self) -> str:
        """Generate PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
