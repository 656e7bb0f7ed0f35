import os
from typing import Final

from dotenv import load_dotenv

load_dotenv()


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


class _Config:
    def __init__(self) -> None:
        # LLM
        self.openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.openai_temperature: float = _float_env("OPENAI_TEMPERATURE", 0.0)

        # Map provider
        self.map_provider: str = os.getenv("MAP_PROVIDER", "amap").strip().lower()
        self.amap_api_key: str = os.getenv("AMAP_API_KEY", "").strip()
        self.google_maps_api_key: str = os.getenv("GOOGLE_MAPS_API_KEY", "").strip()
        self.http_timeout_sec: float = _float_env("HTTP_TIMEOUT_SEC", 10.0)

        # Fallbacks when the client has no GPS fix
        self.default_origin: str = os.getenv("DEFAULT_ORIGIN", "121.4737,31.2304")
        self.default_city: str = os.getenv("DEFAULT_CITY", "上海")

        # Database (Supabase REST). Empty means logging/feedback are disabled.
        self.supabase_url: str = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
        self.supabase_key: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()

        # Server
        self.cors_origins: list[str] = [
            o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()
        ]
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


CONFIG: Final[_Config] = _Config()
