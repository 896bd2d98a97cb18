from functools import lru_cache
from typing import Optional

from openai import OpenAI

from app.config import BASE_URL
from infra.env import get_api_key, get_base_url


@lru_cache(maxsize=8)
def _client_for(api_key: str, base_url: str) -> OpenAI:
    return OpenAI(
        api_key=api_key,
        base_url=base_url,
        max_retries=0
    )


def get_client(api_key: Optional[str] = None) -> OpenAI:
    """OpenAI-compatible client; the key defaults to GEMINI_API_KEY"""
    return _client_for(api_key or get_api_key(), get_base_url(BASE_URL))
