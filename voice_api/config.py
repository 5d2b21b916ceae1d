#!/usr/bin/env python3
"""
Configuration management for the HighestVoice API.
"""

from typing import List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings

from voice_indexer.config import DEFAULT_DATABASE_URL, SUPPORTED_CHAIN_IDS


class Settings(BaseSettings):
    """Application settings with environment-based configuration"""

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Same database the indexer writes to
    database_url: Optional[str] = None

    # Chain used when a request does not pass chain_id
    default_chain_id: int = 31337

    # In-process sync worker (reads networks from the indexer's YAML config)
    run_sync_worker: bool = False
    indexer_config: str = "config.yaml"

    @field_validator('database_url', mode='before')
    @classmethod
    def parse_database_url(cls, v):
        """Handle empty strings for the database URL"""
        if v is None or str(v).strip() == '':
            return None
        return v

    @field_validator('default_chain_id')
    @classmethod
    def check_default_chain(cls, v):
        if v not in SUPPORTED_CHAIN_IDS:
            raise ValueError(f"Unsupported default chain id {v}")
        return v

    def get_effective_database_url(self) -> str:
        return self.database_url or DEFAULT_DATABASE_URL

    def get_cors_origins(self) -> List[str]:
        """Get CORS origins as a list"""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
