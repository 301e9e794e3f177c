"""
Configuration for the recurring task engine.
Values come from the environment (a local .env file is loaded first).
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    """Engine settings read from environment variables"""

    # Database
    DATABASE_URL: str = (
        os.getenv("SQLALCHEMY_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or "sqlite:///./recurrence.db"
    )

    # Generation pass limits
    MAX_CATCH_UP_PER_TEMPLATE: int = int(os.getenv("MAX_CATCH_UP_PER_TEMPLATE", "30"))
    PASS_TIME_BUDGET_SECONDS: float = float(os.getenv("PASS_TIME_BUDGET_SECONDS", "0"))  # 0 = unbounded

    # Single-flight lock: "process" or "database"
    GENERATION_LOCK_BACKEND: str = os.getenv("GENERATION_LOCK_BACKEND", "process")
    GENERATION_LOCK_NAME: str = os.getenv("GENERATION_LOCK_NAME", "recurring-task-generation")
    GENERATION_LOCK_TTL_SECONDS: int = int(os.getenv("GENERATION_LOCK_TTL_SECONDS", "600"))

    # Calendar arithmetic happens in this timezone
    REFERENCE_TIMEZONE: str = os.getenv("REFERENCE_TIMEZONE", "UTC")

    # Template deletion policy for already generated instances
    DELETE_INSTANCES_WITH_TEMPLATE: bool = _env_bool("DELETE_INSTANCES_WITH_TEMPLATE", "false")

    # Monitoring
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def pass_time_budget(cls):
        """Wall-clock budget for one pass in seconds, or None when unbounded"""
        if cls.PASS_TIME_BUDGET_SECONDS <= 0:
            return None
        return cls.PASS_TIME_BUDGET_SECONDS


# Create global settings instance
settings = Settings()
