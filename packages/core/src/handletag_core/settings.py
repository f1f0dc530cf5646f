from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="HANDLE_TAGGER_", extra="ignore")

    store_path: Path = Path("data") / "handle_tags.json"
    # Single well-known key the whole handle->record mapping is stored under.
    storage_key: str = "twitterTaggerData"


settings = Settings()
