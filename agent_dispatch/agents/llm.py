import json
import logging
import re
from typing import Any, Optional

import httpx

from agent_dispatch.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class LLMClient:
    """
    Minimal chat-completions client (OpenAI-compatible endpoint).

    `complete` returns None when no endpoint is configured or the call fails,
    so agents always have a deterministic baseline to fall back on.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/") if api_url else None
        self.api_key = api_key
        self.model = model
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "LLMClient":
        return cls(
            api_url=settings.LLM_API_URL,
            api_key=settings.LLM_API_KEY,
            model=settings.LLM_MODEL,
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_url)

    async def complete(self, prompt: str, system_prompt: Optional[str] = None) -> Optional[str]:
        if not self.configured:
            return None

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            resp = await self._client.post(
                f"{self.api_url}/chat/completions",
                json={"model": self.model, "messages": messages},
                headers=headers,
            )
            resp.raise_for_status()
            return resp.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.warning("LLM call failed (model=%s): %s", self.model, e)
            return None

    async def close(self):
        await self._client.aclose()


def extract_json(text: Optional[str], default: dict[str, Any], context: str) -> dict[str, Any]:
    """
    Pulls the first JSON object out of free-form model output.

    Never raises: missing or malformed output yields `default`, and the
    fallback is logged with `context` so it does not go unnoticed.
    """
    if not text:
        logger.info("%s: no model output, using default", context)
        return default

    match = _JSON_OBJECT.search(text)
    if not match:
        logger.warning("%s: model output contained no JSON object, using default", context)
        return default

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.warning("%s: could not parse model JSON (%s), using default", context, e)
        return default

    if not isinstance(parsed, dict):
        logger.warning("%s: model JSON was not an object, using default", context)
        return default
    return parsed
