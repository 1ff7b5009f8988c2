from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    database_url: str = "sqlite:///./orders.db"
    redis_url: str = "redis://localhost:6379/0"
    debug: bool = True
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    # Client sync agents
    api_base_url: str = "http://localhost:8000/api/v1"
    request_timeout: float = 10.0
    sync_refetch_interval: float = 30.0
    cache_key_prefix: str = "order_cache"
    ws_url: str = "ws://localhost:8000/api/v1/ws"
    ws_reconnect_delay: float = 1.0
    ws_reconnect_delay_max: float = 5.0

    class Config:
        env_file = ".env"

settings = Settings()
