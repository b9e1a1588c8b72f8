"""Chat-completion client and structured-response parsing shared by extractors."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
_CODE_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*(.*?)\s*```$", re.DOTALL)


class LLMExtractionError(RuntimeError):
    """Raised when AI extraction is misconfigured or the provider response is invalid."""


class LLMClient(Protocol):
    """Protocol for pluggable chat-completion clients."""

    def complete(self, messages: list[dict[str, str]], *, max_tokens: int) -> str:
        """Return the raw assistant text for the provided messages."""


@dataclass(slots=True)
class OpenAIChatCompletionsClient:
    """Minimal OpenAI Chat Completions client using stdlib HTTP."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 60
    temperature: float = 0.1

    def complete(self, messages: list[dict[str, str]], *, max_tokens: int) -> str:
        """Call OpenAI and return the assistant message text."""

        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMExtractionError(f"OpenAI HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise LLMExtractionError(f"OpenAI request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise LLMExtractionError(f"OpenAI request timed out after {self.timeout_seconds}s") from exc

        try:
            decoded = json.loads(raw)
            message = decoded["choices"][0]["message"]
            refusal = message.get("refusal")
            if isinstance(refusal, str) and refusal.strip():
                raise LLMExtractionError(f"OpenAI refused the request: {refusal.strip()}")
            content = message["content"]
            if not isinstance(content, str) or not content.strip():
                raise TypeError("OpenAI response content is missing")
            return content
        except LLMExtractionError:
            raise
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise LLMExtractionError("OpenAI returned an unexpected response") from exc


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence such as ```json ... ```."""

    cleaned = text.strip()
    match = _CODE_FENCE_RE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def parse_structured_response(text: str | None) -> dict[str, Any]:
    """Parse model output into a JSON object.

    Anything other than a well-formed JSON object is an error, never a
    partial result.
    """

    if not text or not text.strip():
        raise LLMExtractionError("Model returned an empty response")
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        raise LLMExtractionError(f"Model returned non-JSON output: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise LLMExtractionError(f"Model returned JSON {type(parsed).__name__}, expected an object")
    return parsed


@lru_cache(maxsize=8)
def load_prompt(file_name: str) -> str:
    """Load a prompt template shipped next to this module."""

    prompt_file = _PROMPTS_DIR / file_name
    try:
        prompt_text = prompt_file.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise LLMExtractionError(f"Failed to load prompt file: {prompt_file}") from exc
    if not prompt_text:
        raise LLMExtractionError(f"Prompt file is empty: {prompt_file}")
    return prompt_text
