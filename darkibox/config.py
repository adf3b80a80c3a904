from pathlib import Path
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import logging
from functools import lru_cache

PROTOCOLS = ("path", "key")


class Settings(BaseSettings):
    """
    Centralized configuration for a Darkibox remote with type validation.
    Automatically reads variables from the environment, a .env file and the token file.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    TOKEN_STORAGE_FILE: str = ".darkibox.token"

    # --- Remote Settings ---
    DARKIBOX_REMOTE_NAME: str = "darkibox"
    DARKIBOX_PROTOCOL: str = "path"  # "path" or "key"
    DARKIBOX_BASE_URL: str = "https://darkibox.com"
    DARKIBOX_ROOT: str = ""
    DARKIBOX_API_KEY_ENV: Optional[str] = Field(None, alias="DARKIBOX_API_KEY")
    DARKIBOX_API_KEY_FILE: Optional[str] = None
    UPLOAD_FILE_DESCRIPTION: str = ""

    # --- Pacing and Retries ---
    PACER_MIN_SLEEP: float = Field(0.01, ge=0)  # seconds between requests
    PACER_MAX_SLEEP: float = Field(2.0, ge=0)
    PACER_DECAY_CONSTANT: int = Field(2, ge=1)
    LOW_LEVEL_RETRIES: int = Field(10, ge=1)
    REQUEST_TIMEOUT: float = Field(60.0, gt=0)

    # 0 disables re-fetching stale modification times
    METADATA_TTL_SECONDS: float = Field(0.0, ge=0)

    LOG_LEVEL: str = "INFO"

    # --- Constants and Computed Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent

    @model_validator(mode="before")
    def validate_protocol_settings(cls, values):
        protocol = str(values.get("DARKIBOX_PROTOCOL") or "path").lower()
        if protocol not in PROTOCOLS:
            raise ValueError("Invalid DARKIBOX_PROTOCOL. Must be 'path' or 'key'.")
        values["DARKIBOX_PROTOCOL"] = protocol

        min_sleep = values.get("PACER_MIN_SLEEP")
        max_sleep = values.get("PACER_MAX_SLEEP")
        if min_sleep is not None and max_sleep is not None and float(max_sleep) < float(min_sleep):
            raise ValueError("PACER_MAX_SLEEP must not be lower than PACER_MIN_SLEEP")

        api_key = values.get("DARKIBOX_API_KEY") or values.get("DARKIBOX_API_KEY_ENV")
        if api_key is None or not str(api_key).strip():
            logging.warning(
                "DARKIBOX_API_KEY not found in environment. Will attempt to load from .darkibox.token file."
            )
        return values

    def model_post_init(self, __context):
        """
        After initial settings are loaded from the environment,
        try to load an API key from the local token file as a fallback.
        """
        if not self.DARKIBOX_API_KEY_ENV:
            token_file = self.BASE_DIR / self.TOKEN_STORAGE_FILE
            if token_file.is_file():
                content = token_file.read_text().strip()
                if content:
                    self.DARKIBOX_API_KEY_FILE = content
                    logging.info(f"Found API key in file: {token_file}")

        if self.DARKIBOX_PROTOCOL == "key" and not self.API_KEY:
            raise ValueError("An API key is required when DARKIBOX_PROTOCOL is 'key'")

    @property
    def API_KEY(self) -> Optional[str]:
        """The environment value takes precedence over the token file."""
        return self.DARKIBOX_API_KEY_ENV or self.DARKIBOX_API_KEY_FILE

    @property
    def LOG_FILE(self) -> Path:
        return self.BASE_DIR / "darkibox.log"


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the application settings.
    The first call to this function will initialize the settings.
    """
    return Settings()
