from __future__ import annotations
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

SUPPORTED_LANGUAGES = ("zh", "en", "jp", "kr")

LLM_KEY_ENV_VARS = ("SILICON_CLOUD_API_KEY", "DEEPSEEK_API_KEY", "OPENAI_API_KEY")

@dataclass
class HubConfig:
    # translation provider: "llm" talks to the model directly, "endpoint" to the app route
    translator: str = "llm"
    llm_base_url: str = "https://api.siliconflow.cn/v1"
    llm_model: str = "deepseek-ai/DeepSeek-V3"
    llm_api_key: Optional[str] = None
    translate_url: str = "http://localhost:3000/api/translate"
    chat_url: str = "http://localhost:3000/api/chat"
    github_token: Optional[str] = None

    state_path: str = ".plugin_hub_state.sqlite"
    default_language: str = "zh"
    source_language: str = "en"

    batch_size: int = 10
    inter_batch_delay: float = 0.5
    max_retries: int = 2
    backoff_base: float = 2.0
    request_timeout: float = 60.0
    search_timeout: float = 30.0

    log_level: str = "INFO"

    def validate(self) -> None:
        if self.default_language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported default language {self.default_language!r}")
        if not 1 <= self.batch_size <= 10:
            raise ValueError("batch_size must be between 1 and 10")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")

def _env_overrides() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    key = next((os.environ[k] for k in LLM_KEY_ENV_VARS if os.environ.get(k)), None)
    if key:
        out["llm_api_key"] = key
    if os.environ.get("GITHUB_TOKEN"):
        out["github_token"] = os.environ["GITHUB_TOKEN"]
    if os.environ.get("PLUGIN_HUB_STATE"):
        out["state_path"] = os.environ["PLUGIN_HUB_STATE"]
    return out

def load_config(path: Optional[str] = None, **overrides: Any) -> HubConfig:
    """Defaults, then the YAML file, then environment secrets, then explicit overrides."""
    values: Dict[str, Any] = {}
    if path:
        import yaml
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        known = {f.name for f in fields(HubConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        values.update(data)
    values.update(_env_overrides())
    values.update({k: v for k, v in overrides.items() if v is not None})
    cfg = HubConfig(**values)
    cfg.validate()
    return cfg
