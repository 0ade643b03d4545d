"""HTTP client for a local Ollama server.

Streaming endpoints answer with JSON lines; each line carries a text delta
and a final line has "done": true. The client only decodes the transport;
callers receive plain text tokens.
"""

from __future__ import annotations

import http.client
import json
import logging
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Iterator

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class OllamaError(RuntimeError):
    """Backend call failed. kind: "unreachable" | "model_unavailable" | "http"."""

    def __init__(self, message: str, kind: str = "http", status: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.status = status


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float | None = None
    max_tokens: int | None = None
    system: str | None = None

    def to_payload(self) -> dict:
        options: dict[str, object] = {}
        if self.temperature is not None:
            options["temperature"] = self.temperature
        if self.max_tokens is not None:
            options["num_predict"] = self.max_tokens
        return options


def _error_from_http(e: urllib.error.HTTPError, model: str | None) -> OllamaError:
    try:
        detail = e.read().decode("utf-8", errors="replace").strip()
    except (AttributeError, OSError):
        detail = ""
    try:
        payload = json.loads(detail)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict) and payload.get("error"):
        detail = str(payload["error"])
    detail = detail or str(e.reason)
    if e.code == 404 and model:
        return OllamaError(f"Model not available: {model} ({detail})", "model_unavailable", e.code)
    return OllamaError(f"HTTP {e.code}: {detail}", "http", e.code)


class OllamaClient:
    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _open(self, path: str, body: dict | None = None, *, model: str | None = None):
        url = f"{self.base_url}{path}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        request = urllib.request.Request(
            url,
            data=data,
            headers={"content-type": "application/json", "accept": "application/json"},
            method="POST" if body is not None else "GET",
        )
        try:
            return urllib.request.urlopen(request, timeout=self.timeout)
        except urllib.error.HTTPError as e:
            raise _error_from_http(e, model) from e
        except (urllib.error.URLError, socket.timeout, ConnectionError) as e:
            reason = getattr(e, "reason", e)
            raise OllamaError(f"Cannot reach backend at {self.base_url}: {reason}", "unreachable") from e

    def fetch_models(self) -> list[str]:
        """Names of locally available models."""
        with self._open("/api/tags") as response:
            raw = response.read().decode("utf-8")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise OllamaError(f"Failed to fetch models: invalid JSON ({e})") from e
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            return []
        return [str(m.get("name") or m.get("model") or "") for m in models if isinstance(m, dict)]

    def _stream(self, path: str, body: dict, extract) -> Iterator[str]:
        model = body.get("model")
        logger.debug("stream start path=%s model=%s", path, model)
        with self._open(path, body, model=model) as response:
            try:
                for raw_line in response:
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if not line:
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("skipping undecodable stream line: %r", line[:200])
                        continue
                    if not isinstance(chunk, dict):
                        continue
                    if chunk.get("error"):
                        raise OllamaError(f"Stream error: {chunk['error']}")
                    token = extract(chunk)
                    if token:
                        yield token
                    if chunk.get("done"):
                        return
            except (socket.timeout, ConnectionError, urllib.error.URLError, http.client.HTTPException) as e:
                raise OllamaError(f"Stream error: {e}", "unreachable") from e

    def stream_generate(
        self, model: str, prompt: str, options: GenerationOptions | None = None
    ) -> Iterator[str]:
        """POST /api/generate; yields response text tokens."""
        options = options or GenerationOptions()
        body: dict[str, object] = {"model": model, "prompt": prompt, "stream": True}
        if options.system:
            body["system"] = options.system
        if options.to_payload():
            body["options"] = options.to_payload()
        return self._stream("/api/generate", body, lambda c: c.get("response", ""))

    def stream_chat(
        self, model: str, messages: list[dict], options: GenerationOptions | None = None
    ) -> Iterator[str]:
        """POST /api/chat with the full message history; yields reply tokens."""
        options = options or GenerationOptions()
        history = list(messages)
        if options.system:
            history.insert(0, {"role": "system", "content": options.system})
        body: dict[str, object] = {"model": model, "messages": history, "stream": True}
        if options.to_payload():
            body["options"] = options.to_payload()
        return self._stream(
            "/api/chat", body, lambda c: (c.get("message") or {}).get("content", "")
        )

    def generate(self, model: str, prompt: str, options: GenerationOptions | None = None) -> str:
        return "".join(self.stream_generate(model, prompt, options))

    def chat(self, model: str, messages: list[dict], options: GenerationOptions | None = None) -> str:
        return "".join(self.stream_chat(model, messages, options))
