"""Runtime settings read from the environment (and `.env`).

    GEMINI_API_KEY / API_KEY   Gemini key. Empty is allowed; joining a room
                               then fails with a configuration error.
    DM_PROVIDER                gemini | openai | echo        (default gemini)
    DM_MODEL                   model id                      (default gemini-2.5-flash)
    DM_TEMPERATURE             sampling temperature          (default 0.9)
    DM_PROVIDER_URL            base URL for the openai provider
    DATA_DIR                   key-value store directory     (default ./data)
    STORAGE_QUOTA_BYTES        store quota, 0 for unlimited  (default 5 MiB)
    HOST / PORT                bind address for main.py
"""

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel

from dungeon_master.llm import DEFAULT_MODEL, DEFAULT_TEMPERATURE, ChatLLM, EchoLLM, GeminiLLM, HttpLLM
from dungeon_master.store import DEFAULT_QUOTA_BYTES

ROOT = Path(__file__).parent.parent


class Settings(BaseModel):
    api_key: str = ""
    provider: Literal["gemini", "openai", "echo"] = "gemini"
    model: str = DEFAULT_MODEL
    temperature: float = DEFAULT_TEMPERATURE
    provider_url: str = ""
    data_dir: Path = ROOT / "data"
    storage_quota_bytes: int = DEFAULT_QUOTA_BYTES
    host: str = "127.0.0.1"
    port: int = 13013


def load_settings(env_file: Path | None = None) -> Settings:
    """Build Settings from os.environ after loading the .env file."""
    load_dotenv(env_file or ROOT / ".env")
    values: dict[str, str] = {}
    mapping = {
        "api_key": os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"),
        "provider": os.getenv("DM_PROVIDER"),
        "model": os.getenv("DM_MODEL"),
        "temperature": os.getenv("DM_TEMPERATURE"),
        "provider_url": os.getenv("DM_PROVIDER_URL"),
        "data_dir": os.getenv("DATA_DIR"),
        "storage_quota_bytes": os.getenv("STORAGE_QUOTA_BYTES"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    for field, value in mapping.items():
        if value:
            values[field] = value
    return Settings.model_validate(values)


def build_llm(settings: Settings) -> ChatLLM:
    if settings.provider == "echo":
        return EchoLLM()
    if settings.provider == "openai":
        return HttpLLM(
            provider_url=settings.provider_url,
            api_key=settings.api_key,
            model="" if settings.model == DEFAULT_MODEL else settings.model,
            temperature=settings.temperature,
        )
    return GeminiLLM(
        api_key=settings.api_key,
        model=settings.model,
        temperature=settings.temperature,
    )
