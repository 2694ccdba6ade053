"""HTTP client for the OpenAI Assistants and Embeddings endpoints"""
import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests

from settings import ConfigurationError

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """Non-success response, timeout or malformed payload from the provider."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class RunFailedError(ProviderError):
    """An assistant run ended in a non-completed state or never finished."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class OpenAIClient:
    """Thin wrapper over the provider REST API.

    Every call either returns the decoded JSON payload or raises
    ProviderError. Nothing is retried here.
    """

    def __init__(self, api_key, api_base="https://api.openai.com/v1", timeout=30.0, session=None):
        if not api_key:
            raise ConfigurationError("Missing configuration: OPENAI_API_KEY")
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings):
        return cls(
            api_key=settings.openai_api_key,
            api_base=settings.api_base,
            timeout=settings.request_timeout,
        )

    def _headers(self, assistants=True):
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if assistants:
            headers["OpenAI-Beta"] = "assistants=v2"
        return headers

    def _request(self, method, path, payload=None, params=None, assistants=True) -> Dict[str, Any]:
        url = f"{self.api_base}{path}"
        try:
            response = self.session.request(
                method,
                url,
                headers=self._headers(assistants),
                json=payload,
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise ProviderError(f"Timeout calling {method} {path}") from e
        except requests.RequestException as e:
            raise ProviderError(f"Request error calling {method} {path}: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error("❌ OpenAI %s %s failed: %s - %s", method, path, response.status_code, response.text[:500])
            raise ProviderError(
                f"OpenAI API error {response.status_code} on {method} {path}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from {method} {path}") from e

    # ========================================
    # Threads & messages
    # ========================================
    def create_thread(self, vector_store_id: Optional[str] = None) -> str:
        payload = {}
        if vector_store_id:
            payload["tool_resources"] = {"file_search": {"vector_store_ids": [vector_store_id]}}
        data = self._request("POST", "/threads", payload)
        thread_id = data.get("id")
        if not thread_id:
            raise ProviderError("Thread creation failed, no id in response")
        return thread_id

    def add_message(self, thread_id: str, content: str) -> Dict[str, Any]:
        return self._request(
            "POST", f"/threads/{thread_id}/messages", {"role": "user", "content": content}
        )

    def list_messages(self, thread_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        data = self._request("GET", f"/threads/{thread_id}/messages", params={"limit": limit})
        return data.get("data") or []

    # ========================================
    # Runs
    # ========================================
    def create_run(self, thread_id, assistant_id, instructions, tools) -> Dict[str, Any]:
        payload = {
            "assistant_id": assistant_id,
            "instructions": instructions,
            "tools": list(tools),
        }
        data = self._request("POST", f"/threads/{thread_id}/runs", payload)
        if not data.get("id"):
            raise ProviderError("Run creation failed, no id in response")
        return data

    def get_run(self, thread_id: str, run_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/threads/{thread_id}/runs/{run_id}")

    def stream_run(self, thread_id, assistant_id, instructions, tools) -> Iterator[Tuple[Optional[str], Any]]:
        """Start a streaming run and yield (event_name, data) pairs.

        ``data`` is the decoded JSON payload of each ``data:`` line. The
        ``[DONE]`` terminator ends the iteration.
        """
        payload = {
            "assistant_id": assistant_id,
            "instructions": instructions,
            "tools": list(tools),
            "stream": True,
        }
        path = f"/threads/{thread_id}/runs"
        try:
            response = self.session.post(
                f"{self.api_base}{path}",
                headers=self._headers(),
                json=payload,
                stream=True,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise ProviderError(f"Timeout calling POST {path}") from e
        except requests.RequestException as e:
            raise ProviderError(f"Request error calling POST {path}: {e}") from e

        with response:
            if response.status_code >= 400:
                logger.error("❌ OpenAI stream failed: %s - %s", response.status_code, response.text[:500])
                raise ProviderError(
                    f"OpenAI API error {response.status_code} on POST {path}",
                    status_code=response.status_code,
                )

            event_name = None
            try:
                for line in response.iter_lines(decode_unicode=True):
                    if not line:
                        event_name = None
                        continue
                    if line.startswith("event:"):
                        event_name = line[len("event:"):].strip()
                        continue
                    if not line.startswith("data:"):
                        continue
                    raw = line[len("data:"):].strip()
                    if raw == "[DONE]":
                        return
                    try:
                        data = json.loads(raw)
                    except ValueError:
                        logger.warning("⚠️  Skipping undecodable stream frame: %s", raw[:100])
                        continue
                    yield event_name, data
            except requests.RequestException as e:
                raise ProviderError(f"Stream interrupted: {e}") from e

    # ========================================
    # Embeddings
    # ========================================
    def create_embedding(self, model: str, text: str) -> List[float]:
        data = self._request("POST", "/embeddings", {"model": model, "input": text}, assistants=False)
        try:
            return data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("Embedding response did not contain a vector") from e
