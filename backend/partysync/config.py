import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel


class Settings(BaseModel):
    redis_url: str = "redis://localhost:6379/0"
    allowed_origins: List[str] = ["*"]
    room_ttl_seconds: int = 3600 * 10 # 10 hours
    session_ttl_seconds: int = 3600 * 24
    youtube_api_key: Optional[str] = None
    youtube_api_url: str = "https://www.googleapis.com/youtube/v3/videos"
    metadata_timeout_seconds: float = 10.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            redis_url=os.getenv("REDIS_URL", defaults.redis_url),
            allowed_origins=[o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()],
            room_ttl_seconds=int(os.getenv("ROOM_TTL_SECONDS", defaults.room_ttl_seconds)),
            session_ttl_seconds=int(os.getenv("SESSION_TTL_SECONDS", defaults.session_ttl_seconds)),
            youtube_api_key=os.getenv("YOUTUBE_API_KEY") or None,
            youtube_api_url=os.getenv("YOUTUBE_API_URL", defaults.youtube_api_url),
            metadata_timeout_seconds=float(os.getenv("METADATA_TIMEOUT_SECONDS", defaults.metadata_timeout_seconds)),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
