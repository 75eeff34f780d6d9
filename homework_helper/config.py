import logging
import os
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_LLM_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"
DEFAULT_OCR_MODEL = "qwen-vl-max-latest"
DEFAULT_TEXT_MODEL = "qwen-max-latest"


def setup_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


# --- Model endpoint ---

def llm_api_key() -> str:
    return (os.getenv("DASHSCOPE_API_KEY") or os.getenv("LLM_API_KEY") or "").strip()


def llm_base_url() -> str:
    return (os.getenv("LLM_BASE_URL") or DEFAULT_LLM_BASE_URL).strip().rstrip("/")


def llm_timeout_sec() -> float:
    return float(max(1, _int_env("LLM_TIMEOUT_SEC", 60)))


def ocr_model() -> str:
    return os.getenv("OCR_MODEL", DEFAULT_OCR_MODEL)


def text_model() -> str:
    return os.getenv("TEXT_MODEL", DEFAULT_TEXT_MODEL)


def is_llm_configured() -> bool:
    return bool(llm_api_key())


# --- Object storage (Aliyun OSS) ---

def oss_settings() -> dict:
    return {
        "region": (os.getenv("OSS_REGION") or "").strip(),
        "access_key_id": (os.getenv("OSS_ACCESS_KEY_ID") or "").strip(),
        "access_key_secret": (os.getenv("OSS_ACCESS_KEY_SECRET") or "").strip(),
        "bucket": (os.getenv("OSS_BUCKET") or "").strip(),
    }


def is_oss_configured() -> bool:
    return all(oss_settings().values())


# --- Sessions ---

def auth_secret() -> str:
    return (os.getenv("AUTH_SECRET") or "").strip()


def session_cookie_name() -> str:
    return os.getenv("SESSION_COOKIE_NAME", "hh_session")


def session_ttl_sec() -> int:
    return max(300, _int_env("SESSION_TTL_SEC", 7 * 24 * 3600))


def cors_origins() -> List[str]:
    raw = os.getenv("CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or ["*"]
