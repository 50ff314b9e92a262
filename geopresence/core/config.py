from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    DEFAULT_ROOM: str = "default"         # room served by /v1/ws

    FALLBACK_LATITUDE: float = 0.0
    FALLBACK_LONGITUDE: float = 0.0
    # probed in order; first header present wins
    LATITUDE_HEADERS: list[str] = ["cf-iplatitude", "x-vercel-ip-latitude"]
    LONGITUDE_HEADERS: list[str] = ["cf-iplongitude", "x-vercel-ip-longitude"]

    ROOM_IDLE_TTL_SECONDS: int = 600      # empty rooms older than this are dropped
    ROOM_SWEEP_INTERVAL_SECONDS: int = 60

    OUTBOX_MAX_PENDING: int = 1024       # unsent live events before a member is evicted


settings = Settings()
