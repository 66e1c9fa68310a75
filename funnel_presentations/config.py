"""Configuration management using Pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Application
    app_name: str = "Funnel Presentations"
    app_version: str = "0.3.0"
    debug: bool = True
    log_level: str = "INFO"
    log_format: str = "json"  # "json" for production, "console" for dev

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite:///./data/funnel_presentations.db"

    # JWT
    jwt_secret_key: str = "dev-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24

    # Rate limiting (per user + endpoint)
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60

    # Generation quota per funnel project (failed presentations don't count)
    presentation_limit: int = 3
    presentation_limit_enabled: bool = True

    # Streaming
    stream_timeout_seconds: float = 75 * 60  # 60 slides with images, plus buffer
    sse_heartbeat_seconds: float = 20  # Stay under common 30-60s proxy idle timeouts

    # Text generation (Ollama)
    ollama_base_url: str = "http://localhost:11434"
    chat_model: str = "llama3.2:latest"
    text_temperature: float = 0.7
    text_max_tokens: int = 1000
    text_generation_timeout_seconds: float = 120
    text_generation_max_attempts: int = 2
    slide_delay_seconds: float = 0.2  # Pause between slides to ease provider rate limits

    # Image generation (OpenAI)
    openai_api_key: str = ""
    image_model: str = "dall-e-3"
    image_size: Literal["1024x1024", "1792x1024", "1024x1792"] = "1792x1024"
    image_quality: Literal["standard", "hd"] = "standard"
    image_style: Literal["natural", "vivid"] = "natural"
    image_generation_timeout_seconds: float = 90
    image_download_timeout_seconds: float = 30
    image_generation_max_attempts: int = 2

    # Retry backoff: delay before attempt k is base * 2^(k-2), jittered +/-30%
    retry_base_delay_seconds: float = 1.0

    # Media storage
    media_dir: str = "./data/media"
    media_bucket: str = "presentation-media"
    media_base_url: str = "http://localhost:8000/media"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
