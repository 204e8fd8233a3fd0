import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        scheduler_interval_secs: int,
        max_catchup_iterations: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.scheduler_interval_secs = scheduler_interval_secs
        self.max_catchup_iterations = max_catchup_iterations


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGIT_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgit.db"
    database_url = os.getenv("BUDGIT_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGIT_TIMEZONE", "UTC")
    scheduler_interval_secs = int(os.getenv("BUDGIT_SCHEDULER_INTERVAL_SECS", "3600"))
    max_catchup_iterations = int(os.getenv("BUDGIT_MAX_CATCHUP_ITERATIONS", "5000"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        scheduler_interval_secs=scheduler_interval_secs,
        max_catchup_iterations=max_catchup_iterations,
    )
