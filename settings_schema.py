from typing import Literal

from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    weight_unit: Literal["kg", "lbs"] = "kg"
    round_set_weights: bool = False
    remote_url: str = ""
    remote_api_token: str | bool = ""
    sync_enabled: bool = True
    sync_timeout: float = Field(5.0, gt=0)
    sync_budget: float = Field(60.0, gt=0)
    auto_sync_interval: float = Field(300.0, gt=0)
    rest_days_per_week: int = Field(2, ge=0, le=6)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))


def load_settings(data: dict) -> SettingsSchema:
    """Validate ``data`` and fill in defaults for missing keys."""
    validate_settings(data)
    return SettingsSchema(**data)
