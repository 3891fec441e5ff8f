from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

from cbpro.signing import Credentials


class Settings(BaseSettings):
    # Logging
    log_level: str = "INFO"

    # Coinbase Pro
    cbpro_env: str = Field(default="sandbox", validation_alias="CBPRO_ENV")
    cbpro_base_url: str | None = Field(default=None, validation_alias="CBPRO_BASE_URL")
    cbpro_feed_url: str | None = Field(default=None, validation_alias="CBPRO_FEED_URL")
    cbpro_key: str | None = Field(default=None, validation_alias="CBPRO_KEY")
    cbpro_passphrase: str | None = Field(default=None, validation_alias="CBPRO_PASSPHRASE")
    cbpro_secret: str | None = Field(default=None, validation_alias="CBPRO_SECRET")

    # HTTP
    http_timeout_seconds: float = Field(default=10.0, validation_alias="HTTP_TIMEOUT_SECONDS")

    # Feed
    product_ids_raw: str | None = Field(default=None, validation_alias="PRODUCT_IDS")

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }

    @property
    def product_ids(self) -> Sequence[str]:
        raw = (self.product_ids_raw or "").strip()
        if not raw:
            return []
        return [p.strip() for p in raw.split(",") if p.strip()]

    @property
    def credentials(self) -> Credentials | None:
        if self.cbpro_key and self.cbpro_passphrase and self.cbpro_secret:
            return Credentials(
                key=self.cbpro_key,
                passphrase=self.cbpro_passphrase,
                secret=self.cbpro_secret,
            )
        return None

    @classmethod
    def load(cls) -> "Settings":
        load_dotenv(override=False)
        return cls()


@dataclass(frozen=True)
class CoinbaseEnvDefaults:
    base_url: str
    feed_url: str


SANDBOX_URL = "https://api-public.sandbox.pro.coinbase.com"
MAIN_URL = "https://api.pro.coinbase.com"
SANDBOX_FEED_URL = "wss://ws-feed-public.sandbox.pro.coinbase.com"
MAIN_FEED_URL = "wss://ws-feed.pro.coinbase.com"


def env_defaults(env: str) -> CoinbaseEnvDefaults:
    env = env.lower().strip()
    if env == "sandbox":
        return CoinbaseEnvDefaults(base_url=SANDBOX_URL, feed_url=SANDBOX_FEED_URL)
    if env in {"prod", "production"}:
        return CoinbaseEnvDefaults(base_url=MAIN_URL, feed_url=MAIN_FEED_URL)
    raise ValueError(f"Unknown CBPRO_ENV: {env}")
