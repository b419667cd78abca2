"""Config file."""
import json
from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import quote_plus

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from staking_indexer.app.domain.errors import ConfigurationMissing

DEFAULT_CONTRACTS_FILE = Path(__file__).parent / "registry" / "contracts.json"


class Settings(BaseSettings):
    """Application settings."""

    # PROJECT
    project_name: str = Field("staking-indexer", alias="PROJECT_NAME")

    # DATABASE
    postgres_user: str = Field(..., alias="POSTGRES_USER")
    postgres_password: SecretStr = Field(..., alias="POSTGRES_PASSWORD")
    postgres_server: str = Field(..., alias="POSTGRES_SERVER")
    postgres_port: int = Field(..., alias="POSTGRES_PORT")
    postgres_db: str = Field(..., alias="POSTGRES_DB")
    database_url: str | None = None
    sync_database_url: str | None = None

    # CHAINS
    rpc_urls: dict[int, str] = Field(default_factory=dict, alias="RPC_URLS")
    contracts_file: Path = Field(DEFAULT_CONTRACTS_FILE, alias="CONTRACTS_FILE")

    # PROJECTION
    missing_entity_policy: str = Field("strict", alias="MISSING_ENTITY_POLICY")
    balance_read_attempts: int = Field(3, alias="BALANCE_READ_ATTEMPTS", ge=1)
    balance_read_max_wait_seconds: float = Field(10.0, alias="BALANCE_READ_MAX_WAIT_SECONDS", gt=0)
    balance_cache_ttl_seconds: float = Field(60.0, alias="BALANCE_CACHE_TTL_SECONDS", ge=0)
    balance_cache_max_size: int = Field(10_000, alias="BALANCE_CACHE_MAX_SIZE", ge=1)

    @field_validator("missing_entity_policy")
    @classmethod
    def check_policy(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("strict", "synthesize"):
            raise ValueError(f"Unsupported missing entity policy: {v!r}")
        return v

    @model_validator(mode="after")
    def assemble_db_urls(self) -> "Settings":
        user = quote_plus(self.postgres_user)
        password = quote_plus(self.postgres_password.get_secret_value())
        host = self.postgres_server
        port = self.postgres_port
        db = self.postgres_db

        if not self.database_url:
            self.database_url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db}"

        if not self.sync_database_url:
            self.sync_database_url = f"postgresql://{user}:{password}@{host}:{port}/{db}"

        return self

    def rpc_url(self, chain_id: int) -> str:
        try:
            url = self.rpc_urls[chain_id]
        except KeyError:
            raise ConfigurationMissing(f"RPC_URLS has no entry for chain_id={chain_id}")
        if not url:
            raise ConfigurationMissing(f"RPC_URLS entry for chain_id={chain_id} is empty")
        return url

    def load_contracts(self) -> list[dict[str, Any]]:
        with open(self.contracts_file, encoding="utf-8") as f:
            return json.load(f)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    return Settings()
