"""Client for an OpenAI-compatible chat endpoint."""

import json
import urllib.error
import urllib.request

from . import fmt
from .report import TransportError

DEFAULT_BASE_URL = "https://api.llm.vin/v1"
DEFAULT_MODEL = "grok-3-mini"


class ChatClient:
    """Talks to `<base_url>/models` directly and to chat completions via LiteLLM.

    The model list is fetched once and cached; pass `refresh=True` to
    `list_models()` to re-query.
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, api_key: str | None = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._models: list[dict] | None = None

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def list_models(self, refresh: bool = False) -> list[dict]:
        """Return `[{"id", "supports_function"}]` for every served model."""
        if self._models is not None and not refresh:
            return self._models

        url = f"{self.base_url}/models"
        try:
            req = urllib.request.Request(url, headers=self._headers())
            with urllib.request.urlopen(req, timeout=10) as resp:
                data = json.loads(resp.read().decode())
        except urllib.error.URLError as e:
            raise TransportError(f"failed to fetch models from {url}: {e}")
        except json.JSONDecodeError as e:
            raise TransportError(f"invalid JSON from {url}: {e}")

        entries = data.get("data") if isinstance(data, dict) else None
        self._models = [
            {
                "id": entry.get("id"),
                "supports_function": bool(entry.get("function_calling", False)),
            }
            for entry in entries or []
            if isinstance(entry, dict) and entry.get("id")
        ]
        return self._models

    def validate_model(self, name: str) -> bool:
        return any(m["id"] == name for m in self.list_models())

    def get_model_capabilities(self, name: str) -> dict:
        for m in self.list_models():
            if m["id"] == name:
                return m
        return {"id": name, "supports_function": False}

    def send_message(self, model: str, messages: list, tools: list | None = None):
        """Send one chat completion request.

        Returns the reply text, or `{"content", "tool_calls"}` when the model
        asked for function calls. Whether to offer tools is the caller's
        decision; they are sent whenever given.
        """
        import litellm

        litellm.suppress_debug_info = True

        completion_kwargs = dict(
            model=f"openai/{model}",
            messages=messages,
            api_base=self.base_url,
            api_key=self.api_key or "winecode",
        )
        if tools:
            completion_kwargs["tools"] = tools
            completion_kwargs["tool_choice"] = "auto"

        try:
            response = litellm.completion(**completion_kwargs)
        except Exception as e:
            raise TransportError(f"API request failed: {e}")

        try:
            message = response.choices[0].message
        except (AttributeError, IndexError) as e:
            raise TransportError(f"malformed response from {self.base_url}: {e}")

        content = getattr(message, "content", None) or ""
        tool_calls = getattr(message, "tool_calls", None)
        if not tool_calls:
            return content
        return {
            "content": content,
            "tool_calls": [
                {
                    "id": tc.id,
                    "name": tc.function.name,
                    "arguments": tc.function.arguments,
                }
                for tc in tool_calls
            ],
        }


def resolve_model(client: ChatClient, requested: str | None, verbose: bool = True) -> str:
    """Return *requested* if served, else fall back to the default model.

    When the model list cannot be fetched the request is trusted as-is.
    """
    model = requested or DEFAULT_MODEL
    try:
        if client.validate_model(model):
            return model
    except TransportError as e:
        if verbose:
            fmt.warning(f"could not validate model {model!r}: {e}")
        return model
    if model != DEFAULT_MODEL:
        fmt.warning(f"model {model!r} is not available, using {DEFAULT_MODEL}")
        return DEFAULT_MODEL
    return model
