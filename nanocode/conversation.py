"""Conversation state: the ordered message log sent to the model."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: str

    @classmethod
    def from_dict(cls, data: dict) -> "ToolCall":
        fn = data.get("function") or {}
        return cls(
            id=data.get("id", ""),
            name=fn.get("name", ""),
            arguments=fn.get("arguments") or "",
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class Usage:
    """Token accounting reported alongside a model response."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float | None = None


def system_message(content: str) -> dict:
    return {"role": "system", "content": content}


def user_message(content: str) -> dict:
    return {"role": "user", "content": content}


def tool_message(tool_call_id: str, content: str) -> dict:
    return {"role": "tool", "tool_call_id": tool_call_id, "content": content}


class Conversation:
    """Append-only message log, optionally seeded with a system prompt.

    The list order is the causal history of the session and is submitted to
    the model exactly as stored. reset() is the only way to shrink it.
    """

    def __init__(self, seed: str | None = None):
        self.seed = seed
        self._messages: list[dict] = self._initial_messages(seed)

    @staticmethod
    def _initial_messages(seed: str | None) -> list[dict]:
        if seed:
            return [system_message(seed)]
        return []

    @property
    def messages(self) -> list[dict]:
        return self._messages

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    def append(self, message: dict) -> None:
        self._messages.append(message)

    def reset(self, seed: str | None = None) -> None:
        """Replace the whole history with the seed system message (if any)."""
        if seed is not None:
            self.seed = seed
        self._messages = self._initial_messages(self.seed)

    def pending_tool_calls(self) -> list[str]:
        """Ids of the last assistant message's tool calls still lacking a result."""
        for index in range(len(self._messages) - 1, -1, -1):
            msg = self._messages[index]
            if msg.get("role") == "tool":
                continue
            if msg.get("role") != "assistant" or not msg.get("tool_calls"):
                return []
            answered = {
                m.get("tool_call_id") for m in self._messages[index + 1 :]
            }
            return [
                tc["id"] for tc in msg["tool_calls"] if tc["id"] not in answered
            ]
        return []

    def resolve_pending(self, content: str) -> int:
        """Answer every pending tool call with content. Returns how many."""
        pending = self.pending_tool_calls()
        for call_id in pending:
            self.append(tool_message(call_id, content))
        return len(pending)
