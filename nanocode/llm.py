"""Model client: one chat-completion request per call, via LiteLLM."""

import logging

from .conversation import ToolCall, Usage
from .report import TransportError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "minimax/minimax-m2.1"
DEFAULT_API_URL = "https://openrouter.ai/api/v1/chat/completions"

_COMPLETIONS_SUFFIX = "/chat/completions"


def api_base_from_url(api_url: str) -> str:
    """Strip the chat-completions path from an endpoint URL.

    "https://openrouter.ai/api/v1/chat/completions" -> "https://openrouter.ai/api/v1"
    """
    url = api_url.rstrip("/")
    if url.endswith(_COMPLETIONS_SUFFIX):
        url = url[: -len(_COMPLETIONS_SUFFIX)]
    return url


def _field(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _message_to_dict(message) -> dict:
    """Normalize a LiteLLM message object into a wire-format dict."""
    result: dict = {"role": "assistant", "content": _field(message, "content")}
    tool_calls = []
    for tc in _field(message, "tool_calls") or []:
        fn = _field(tc, "function")
        tool_calls.append(
            ToolCall(
                id=_field(tc, "id") or "",
                name=_field(fn, "name") or "",
                arguments=_field(fn, "arguments") or "",
            ).to_dict()
        )
    if tool_calls:
        result["tool_calls"] = tool_calls
    return result


def _usage_from_response(response) -> Usage | None:
    usage = _field(response, "usage")
    if usage is None:
        return None
    cost = _field(usage, "cost")
    if cost is None:
        hidden = getattr(response, "_hidden_params", None) or {}
        cost = hidden.get("response_cost")
    return Usage(
        prompt_tokens=_field(usage, "prompt_tokens", 0) or 0,
        completion_tokens=_field(usage, "completion_tokens", 0) or 0,
        total_tokens=_field(usage, "total_tokens", 0) or 0,
        cost=float(cost) if isinstance(cost, (int, float)) else None,
    )


def call_llm(
    messages: list,
    tools: list,
    *,
    model: str,
    api_key: str,
    api_url: str = DEFAULT_API_URL,
) -> tuple[dict, str, Usage | None]:
    """Request one completion for the full history.

    Returns (assistant_message, finish_reason, usage). Raises TransportError
    for any failure talking to the endpoint; nothing is retried here.
    """
    import litellm

    litellm.suppress_debug_info = True

    completion_kwargs = dict(
        model=f"openai/{model}",
        messages=messages,
        tools=tools,
        n=1,
        api_base=api_base_from_url(api_url),
        api_key=api_key,
        num_retries=0,
    )
    logger.debug("POST %s model=%s messages=%d", api_url, model, len(messages))

    try:
        response = litellm.completion(**completion_kwargs)
    except Exception as e:
        status = getattr(e, "status_code", None)
        body = getattr(e, "message", None) or str(e)
        logger.debug("model request failed: status=%s", status)
        if status is not None:
            raise TransportError(f"API error: {status} {body}", status_code=status) from e
        raise TransportError(f"API request failed: {body}") from e

    choices = _field(response, "choices") or []
    if not choices:
        raise TransportError("API error: response contained no choices")

    choice = choices[0]
    message = _message_to_dict(_field(choice, "message"))
    finish_reason = _field(choice, "finish_reason") or ""
    return message, finish_reason, _usage_from_response(response)
