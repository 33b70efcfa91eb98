import logging
from typing import Dict, List, Optional

import requests

from config import GEMINI_API_KEY, GEMINI_MODEL, GEMINI_TIMEOUT
from errors import InternalError, UpstreamServiceError

logger = logging.getLogger(__name__)

BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


def make_messages(messages: List[Dict[str, str]]) -> List[Dict]:
    return [{"role": m["role"], "parts": [{"text": m["content"]}]} for m in messages]


class GeminiClient:
    """Thin adapter around the generateContent endpoint."""

    def __init__(self, api_key: Optional[str] = GEMINI_API_KEY, model: str = GEMINI_MODEL,
                 timeout: float = GEMINI_TIMEOUT):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    def think(self, contents: List[Dict], system_instruction: str) -> str:
        if not self.api_key:
            raise InternalError("AI service is not configured")

        body = {
            "system_instruction": {"parts": [{"text": system_instruction}]},
            "contents": contents,
        }
        url = f"{BASE_URL}/{self.model}:generateContent"
        try:
            response = requests.post(url, params={"key": self.api_key}, json=body, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            logger.error("AI provider unreachable: %s", exc)
            raise UpstreamServiceError("AI service is unreachable. Please try again later.")

        try:
            result = response.json()
        except ValueError:
            result = {}

        if not response.ok:
            detail = (result.get("error") or {}).get("message") if isinstance(result, dict) else None
            logger.error("AI provider error %s: %s", response.status_code, detail or response.text[:200])
            raise UpstreamServiceError("AI service returned an error")

        try:
            text = result["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not text:
            logger.error("AI provider returned no text")
            raise UpstreamServiceError("AI service returned no answer")
        return text
