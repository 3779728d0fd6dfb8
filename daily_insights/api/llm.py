from __future__ import annotations

import json
import logging
from typing import Any

import requests

from daily_insights.api.http import build_retrying

logger = logging.getLogger(__name__)

BASE_URL = "https://api.openai.com/v1"


class InsightValidationError(ValueError):
    pass


class OpenAIInsightGenerator:
    """Chat-completions client that returns the model's JSON object reply."""

    def __init__(
        self,
        api_key: str,
        base_url: str = BASE_URL,
        model: str = "gpt-4-turbo-preview",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_s: int = 60,
        retry_max: int = 2,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = (10, timeout_s)
        self.retrying = build_retrying(retry_max)
        self.session = session or requests.Session()

    def __call__(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }
        data = self.retrying(self._post, "/chat/completions", payload)
        content = self._extract_content(data)
        if not content:
            raise InsightValidationError("No content returned from chat completion")
        try:
            parsed = json.loads(content)
        except ValueError as exc:
            raise InsightValidationError(f"Chat completion content is not JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise InsightValidationError("Chat completion content is not a JSON object")
        return parsed

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        response = self.session.post(
            f"{self.base_url}{path}",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _extract_content(data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        choices = data.get("choices") or [{}]
        message = (choices[0] or {}).get("message") or {}
        content = message.get("content") or ""
        return content.strip() if isinstance(content, str) else ""
