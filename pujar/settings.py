from decimal import Decimal
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
import tomllib
import os

from pujar.core import Role
from pujar.pricing import QUICK_STEPS


class ApiCfg(BaseModel):
    base_url: str = "http://localhost:3000/api"
    token: Optional[str] = None
    timeout_seconds: float = 30


class ViewerCfg(BaseModel):
    id: Optional[int] = None
    role: Role = Role.CLIENT


class PollingCfg(BaseModel):
    interval_seconds: float = 3
    subscription_max_age_seconds: float = 120


class BiddingCfg(BaseModel):
    # cent-level step: the server only requires "strictly greater"
    minimum_increment: Decimal = Decimal("0.01")
    quick_steps: List[Decimal] = Field(
        default_factory=lambda: list(QUICK_STEPS)
    )


class StorageCfg(BaseModel):
    journal: bool = True
    db_url: str = "sqlite:///pujar.sqlite"


class Settings(BaseModel):
    api: ApiCfg = ApiCfg()
    viewer: ViewerCfg = ViewerCfg()
    polling: PollingCfg = PollingCfg()
    bidding: BiddingCfg = BiddingCfg()
    storage: StorageCfg = StorageCfg()


def load_settings() -> Settings:
    cfg_path = Path(os.getenv("PUJAR_CONFIG", "pujar.toml"))
    raw = tomllib.loads(cfg_path.read_text()) if cfg_path.exists() else {}
    settings = Settings.model_validate(raw)

    # environment wins over the file for deploy-specific values
    if url := os.getenv("PUJAR_API_BASE_URL"):
        settings.api.base_url = url
    if token := os.getenv("PUJAR_TOKEN"):
        settings.api.token = token
    return settings
