"""OpenAI-compatible chat-completions implementation of ``TextProvider``."""

from __future__ import annotations

import http.client
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib import error, request

from nl2query.llm.base import ProviderError, TextProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenAICompatibleProvider(TextProvider):
    """Call any ``/chat/completions`` endpoint speaking the OpenAI wire format.

    This covers OpenAI itself and routers such as the Hugging Face inference
    router, which is the default base URL in settings.
    """

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: float = 60

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.model

    def complete(
        self,
        prompt: str,
        text: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        body = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": prompt},
                {"role": "user", "content": text},
            ],
        }

        endpoint = self.base_url.rstrip("/") + "/chat/completions"
        req = request.Request(
            endpoint,
            method="POST",
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

        logger.debug("Requesting completion from %s (%s)", self.model, endpoint)
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except error.HTTPError as exc:
            details = exc.read().decode("utf-8", errors="replace")
            raise ProviderError(
                f"{self.model} request failed with HTTP {exc.code}: {details}"
            ) from exc
        except error.URLError as exc:
            raise ProviderError(f"{self.model} request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise ProviderError(f"{self.model} request timed out.") from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ProviderError(f"{self.model} response was not valid JSON.") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise ProviderError(f"{self.model} connection failed: {exc}") from exc

        return self._extract_message_content(payload)

    def _extract_message_content(self, payload: Any) -> str:
        if not isinstance(payload, dict):
            raise ProviderError(f"{self.model} response is not a JSON object.")
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderError(f"{self.model} response is missing choices.")

        first = choices[0]
        if not isinstance(first, dict):
            raise ProviderError(f"{self.model} response has invalid choice format.")

        message = first.get("message")
        if not isinstance(message, dict):
            raise ProviderError(f"{self.model} response is missing message content.")

        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ProviderError(f"{self.model} message content is empty.")
        return content.strip()
