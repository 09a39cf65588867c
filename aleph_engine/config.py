"""Engine configuration from the environment (and a .env file, if present)."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from aleph_engine.assets import HttpAssetSource
from aleph_engine.gateway import GenerationGateway
from aleph_engine.llm import HttpLLM, ProviderFormat
from aleph_engine.narration import HttpSpeech
from aleph_engine.session import HISTORY_WINDOW

ROOT = Path(__file__).parent.parent


class EngineConfig(BaseModel):
    provider_url: str = "http://localhost:5001"
    api_key: str = ""
    provider_format: ProviderFormat = "openai"
    primary_model: str = ""
    fallback_model: str = ""
    image_url: str = ""
    sound_url: str = ""
    speech_url: str = ""
    generation_timeout: float | None = None  # None: wait for the model indefinitely
    history_window: int = HISTORY_WINDOW
    data_dir: Path = ROOT / "data"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 13013


def load_config(env_file: Path | None = None) -> EngineConfig:
    """Build the config from ALEPH_* variables. Unset or empty means default."""
    load_dotenv(env_file or ROOT / ".env")
    env = {
        "provider_url": os.getenv("ALEPH_PROVIDER_URL"),
        "api_key": os.getenv("ALEPH_API_KEY"),
        "provider_format": os.getenv("ALEPH_PROVIDER_FORMAT"),
        "primary_model": os.getenv("ALEPH_PRIMARY_MODEL"),
        "fallback_model": os.getenv("ALEPH_FALLBACK_MODEL"),
        "image_url": os.getenv("ALEPH_IMAGE_URL"),
        "sound_url": os.getenv("ALEPH_SOUND_URL"),
        "speech_url": os.getenv("ALEPH_SPEECH_URL"),
        "generation_timeout": os.getenv("ALEPH_GENERATION_TIMEOUT"),
        "history_window": os.getenv("ALEPH_HISTORY_WINDOW"),
        "data_dir": os.getenv("DATA_DIR"),
        "log_level": os.getenv("LOG_LEVEL"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    return EngineConfig.model_validate({k: v for k, v in env.items() if v})


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger and quiet noisy third-party loggers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        stream=sys.stdout,
        force=True,
    )
    for name in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_gateway(config: EngineConfig) -> GenerationGateway:
    """Primary and fallback clients share a backend and differ by model."""
    def client(model: str) -> HttpLLM:
        return HttpLLM(
            provider_url=config.provider_url,
            api_key=config.api_key,
            provider_format=config.provider_format,
            model=model,
        )

    return GenerationGateway(
        primary=client(config.primary_model),
        fallback=client(config.fallback_model or config.primary_model),
        timeout=config.generation_timeout,
    )


def build_assets(config: EngineConfig) -> HttpAssetSource | None:
    if not (config.image_url or config.sound_url):
        return None
    return HttpAssetSource(
        image_url=config.image_url, sound_url=config.sound_url, api_key=config.api_key,
    )


def build_speech(config: EngineConfig) -> HttpSpeech | None:
    if not config.speech_url:
        return None
    return HttpSpeech(url=config.speech_url, api_key=config.api_key)
