import os
from dotenv import load_dotenv

load_dotenv()


def require_env(key: str) -> str:
    value = os.getenv(key)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {key}")
    return value


def get_api_key() -> str:
    """API key for the OpenAI-compatible endpoint (read on demand)"""
    return require_env("GEMINI_API_KEY")


def get_base_url(default: str) -> str:
    return os.getenv("LLM_BASE_URL") or default
