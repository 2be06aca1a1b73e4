import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "PROMPTMACK_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
SECRET_FIELDS = (
    "serper_api_key",
    "exa_api_key",
    "firecrawl_api_key",
    "skyvern_api_key",
    "auth_secret",
)


class ModelEndpointConfig(BaseModel):
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    model_id: str = "gemini-2.0-flash"
    api_key: Optional[str] = None

    model_config = {"protected_namespaces": ()}


class PollingConfig(BaseModel):
    max_attempts: int = 10
    interval_s: float = 3.0


class AppSettings(BaseModel):
    chat_endpoint: ModelEndpointConfig = Field(default_factory=ModelEndpointConfig)
    max_output_tokens: int = 8192
    temperature: float = 0.7
    max_tool_steps: int = 5
    assistant_name: str = "Promptmack"

    serper_api_key: Optional[str] = None
    exa_api_key: Optional[str] = None
    firecrawl_api_key: Optional[str] = None
    skyvern_api_key: Optional[str] = None

    serper_base_url: str = "https://google.serper.dev"
    exa_base_url: str = "https://api.exa.ai"
    firecrawl_base_url: str = "https://api.firecrawl.dev/v1"
    skyvern_base_url: str = "https://api.skyvern.com/api/v1"
    weather_base_url: str = "https://api.open-meteo.com/v1"
    vendor_timeout_s: float = 60.0
    polling: PollingConfig = Field(default_factory=PollingConfig)

    auth_secret: Optional[str] = None
    token_ttl_minutes: int = 60 * 24 * 30
    database_path: str = "promptmack.db"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in SECRET_FIELDS:
            if data.get(key):
                data[key] = "********"
        if data["chat_endpoint"].get("api_key"):
            data["chat_endpoint"]["api_key"] = "********"
        return data

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "chat_model_base_url": os.getenv("CHAT_MODEL_BASE_URL"),
        "chat_model_id": os.getenv("CHAT_MODEL_ID"),
        "chat_model_api_key": os.getenv("CHAT_MODEL_API_KEY") or os.getenv("GOOGLE_GENERATIVE_AI_API_KEY"),
        "max_output_tokens": os.getenv("MAX_OUTPUT_TOKENS"),
        "max_tool_steps": os.getenv("MAX_TOOL_STEPS"),
        "serper_api_key": os.getenv("SERPER_API_KEY"),
        "exa_api_key": os.getenv("EXA_API_KEY"),
        "firecrawl_api_key": os.getenv("FIRECRAWL_API_KEY"),
        "skyvern_api_key": os.getenv("SKYVERN_API_KEY"),
        "poll_max_attempts": os.getenv("POLL_MAX_ATTEMPTS"),
        "poll_interval_s": os.getenv("POLL_INTERVAL_S"),
        "auth_secret": os.getenv("AUTH_SECRET"),
        "token_ttl_minutes": os.getenv("TOKEN_TTL_MINUTES"),
        "database_path": os.getenv("DATABASE_PATH"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
        "log_level": os.getenv("LOG_LEVEL"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in ("max_output_tokens", "max_tool_steps", "poll_max_attempts", "token_ttl_minutes", "port"):
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    if "poll_interval_s" in cleaned:
        cleaned["poll_interval_s"] = float(cleaned["poll_interval_s"])
    if "log_level" in cleaned:
        cleaned["log_level"] = str(cleaned["log_level"]).lower()
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def _fold_nested(env_data: Dict[str, Any]) -> Dict[str, Any]:
    """Move flat CHAT_MODEL_* / POLL_* env values into their nested sections."""
    folded = dict(env_data)
    endpoint = {}
    for flat, nested in (
        ("chat_model_base_url", "base_url"),
        ("chat_model_id", "model_id"),
        ("chat_model_api_key", "api_key"),
    ):
        if flat in folded:
            endpoint[nested] = folded.pop(flat)
    if endpoint:
        folded["chat_endpoint"] = endpoint
    polling = {}
    for flat, nested in (("poll_max_attempts", "max_attempts"), ("poll_interval_s", "interval_s")):
        if flat in folded:
            polling[nested] = folded.pop(flat)
    if polling:
        folded["polling"] = polling
    return folded


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _fold_nested(_load_from_env())
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except json.JSONDecodeError:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        high, low = env_data, file_data
    else:
        high, low = file_data, env_data
    merged = {**low, **high}
    for section in ("chat_endpoint", "polling"):
        low_section = low.get(section) if isinstance(low.get(section), dict) else {}
        high_section = high.get(section) if isinstance(high.get(section), dict) else {}
        if low_section or high_section:
            merged[section] = {**low_section, **high_section}
    for key in SECRET_FIELDS:
        if not merged.get(key) and env_data.get(key):
            merged[key] = env_data[key]
    return AppSettings(**merged)


def save_settings(settings: AppSettings, config_path: Optional[Path] = None) -> None:
    path = config_path or CONFIG_PATH
    path.write_text(settings.model_dump_json(indent=2))
