from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import yaml
from dotenv import load_dotenv

load_dotenv()

CORRECTION_CONTEXT_MODES = ("first", "all", "none")
CHART_MAPPERS = ("llm", "heuristic")

def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)

def _env_bool(key: str, default: bool = False) -> bool:
    val = os.environ.get(key)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "y", "on")

def _env_list(key: str, default: List[str]) -> List[str]:
    val = os.environ.get(key)
    if not val:
        return default
    return [x.strip() for x in val.split(",") if x.strip()]

def _choice(value: str, allowed: tuple, key: str) -> str:
    v = (value or "").strip().lower()
    if v not in allowed:
        raise ValueError(f"{key} must be one of {allowed}, got {value!r}")
    return v

@dataclass(frozen=True)
class Settings:
    env: str
    log_level: str
    log_file: str

    delimiter: str
    fallback_encodings: List[str]
    skip_bad_lines: bool
    max_rows_preview: int

    table_name: str

    # Repair loop / transformer
    max_query_attempts: int
    correction_context: str
    chart_mapper: str
    transform_sample_rows: int

    aws_region: str
    bedrock_chat_model_id: str
    llm_temperature: float
    llm_max_tokens: int
    llm_max_retries: int

def load_settings(config_dir: Optional[str] = None) -> Settings:
    app_env = _env("APP_ENV", "dev")
    cfg_path = Path(config_dir or _env("CONFIG_DIR", "config")) / f"{app_env}.yaml"
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    cfg = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    app_cfg = cfg.get("app") or {}
    ing_cfg = cfg.get("ingestion") or {}
    store_cfg = cfg.get("store") or {}
    agent_cfg = cfg.get("agent") or {}
    model_cfg = cfg.get("models") or {}

    max_query_attempts = int(_env("MAX_QUERY_ATTEMPTS", str(agent_cfg.get("max_query_attempts", 3))))
    if max_query_attempts < 1:
        raise ValueError("MAX_QUERY_ATTEMPTS must be >= 1")

    return Settings(
        env=app_env,
        log_level=_env("LOG_LEVEL", str(app_cfg.get("log_level", "INFO"))),
        log_file=_env("LOG_FILE", str(app_cfg.get("log_file", "logs/app.log"))),
        delimiter=_env("DEFAULT_DELIMITER", str(ing_cfg.get("delimiter", ","))),
        fallback_encodings=_env_list(
            "FALLBACK_ENCODINGS", list(ing_cfg.get("fallback_encodings", ["utf-8-sig", "latin-1"]))
        ),
        skip_bad_lines=_env_bool("SKIP_BAD_LINES", bool(ing_cfg.get("skip_bad_lines", False))),
        max_rows_preview=int(_env("MAX_ROWS_PREVIEW", str(ing_cfg.get("max_rows_preview", 20)))),
        table_name=_env("TABLE_NAME", str(store_cfg.get("table_name", "my_table"))),
        max_query_attempts=max_query_attempts,
        correction_context=_choice(
            _env("CORRECTION_CONTEXT", str(agent_cfg.get("correction_context", "first"))),
            CORRECTION_CONTEXT_MODES,
            "CORRECTION_CONTEXT",
        ),
        chart_mapper=_choice(
            _env("CHART_MAPPER", str(agent_cfg.get("chart_mapper", "llm"))),
            CHART_MAPPERS,
            "CHART_MAPPER",
        ),
        transform_sample_rows=int(_env("TRANSFORM_SAMPLE_ROWS", str(agent_cfg.get("transform_sample_rows", 5)))),
        aws_region=_env("AWS_REGION", str(model_cfg.get("region", "us-east-1"))),
        bedrock_chat_model_id=_env(
            "BEDROCK_CHAT_MODEL_ID",
            str(model_cfg.get("chat_model_id", "anthropic.claude-3-haiku-20240307-v1:0")),
        ),
        llm_temperature=float(_env("LLM_TEMPERATURE", str(model_cfg.get("temperature", 0.0)))),
        llm_max_tokens=int(_env("LLM_MAX_TOKENS", str(model_cfg.get("max_tokens", 1200)))),
        llm_max_retries=int(_env("LLM_MAX_RETRIES", str(model_cfg.get("max_retries", 3)))),
    )
