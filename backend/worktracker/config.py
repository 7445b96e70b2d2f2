from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_weekdays(value: str) -> List[int]:
    return [int(day.strip()) for day in value.split(",") if day.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "WorkTracker"
    sqlite_path: Path = Path(os.getenv("WT_SQLITE_PATH", "./data/worktracker.db"))
    base_url: Optional[str] = os.getenv("WT_BASE_URL")
    timeout: int = int(os.getenv("WT_TIMEOUT", "15"))
    editor_page: str = os.getenv("WT_EDITOR_PAGE", "time_edit.php")

    work_hours_per_day: int = int(os.getenv("WT_WORK_HOURS_PER_DAY", "8"))
    # ISO weekdays, Monday is 1 and Sunday is 7
    work_days: List[int] = Field(
        default_factory=lambda: _split_weekdays(os.getenv("WT_WORK_DAYS", "7,1,2,3,4"))
    )
    first_weekday: int = int(os.getenv("WT_FIRST_WEEKDAY", "7"))

    log_level: str = os.getenv("WT_LOG_LEVEL", "INFO")

    @field_validator("work_days", mode="before")
    @classmethod
    def _parse_work_days(cls, value: str | List[int]) -> List[int]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return _split_weekdays(str(value))

    @field_validator("work_days")
    @classmethod
    def _check_work_days(cls, value: List[int]) -> List[int]:
        for day in value:
            if day < 1 or day > 7:
                raise ValueError(f"invalid ISO weekday: {day}")
        return sorted(set(value))

    @field_validator("first_weekday")
    @classmethod
    def _check_first_weekday(cls, value: int) -> int:
        if value < 1 or value > 7:
            raise ValueError(f"invalid ISO weekday: {value}")
        return value


settings = Settings()
