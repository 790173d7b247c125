"""Public library API for nanocode: Session class and Result dataclass."""

import copy
from dataclasses import dataclass

from .conversation import Conversation
from .llm import DEFAULT_API_URL, DEFAULT_MODEL
from .report import ConfigError
from .tools import TOOLS


@dataclass
class Result:
    """Result of a session run or ask call."""

    answer: str | None
    exhausted: bool
    messages: list[dict]


class Session:
    """Programmatic interface to the nanocode agent loop.

    Call .run() for single-shot questions or .ask() for multi-turn
    conversations. Without a confirm callable, write/edit/bash calls are
    denied unless yolo is set.
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        api_url: str = DEFAULT_API_URL,
        base_dir: str = ".",
        max_turns: int = 10,
        system_prompt: str | None = None,
        no_system_prompt: bool = False,
        yolo: bool = False,
        confirm=None,
        verbose: bool = False,
    ):
        if not api_key:
            raise ConfigError("api_key is required")
        if max_turns < 1:
            raise ConfigError(f"max_turns must be at least 1, got {max_turns}")

        self.model = model
        self.api_key = api_key
        self.api_url = api_url
        self.base_dir = base_dir
        self.max_turns = max_turns
        self.system_prompt = system_prompt
        self.no_system_prompt = no_system_prompt
        self.yolo = yolo
        self.confirm = confirm
        self.verbose = verbose

        self._seed: str | None = None
        self._seed_built = False
        self._conversation: Conversation | None = None

    def _system_content(self) -> str | None:
        if not self._seed_built:
            from .agent import build_system_prompt

            self._seed = build_system_prompt(self.system_prompt, self.no_system_prompt)
            self._seed_built = True
        return self._seed

    def _loop_kwargs(self) -> dict:
        from .agent import deny_all

        return dict(
            model=self.model,
            api_key=self.api_key,
            api_url=self.api_url,
            base_dir=self.base_dir,
            max_turns=self.max_turns,
            confirm=self.confirm or deny_all,
            yolo=self.yolo,
            verbose=self.verbose,
        )

    def _run(self, conversation: Conversation, question: str) -> Result:
        from .agent import run_agent_loop

        answer, exhausted = run_agent_loop(
            conversation, question, TOOLS, **self._loop_kwargs()
        )
        return Result(
            answer=answer,
            exhausted=exhausted,
            messages=copy.deepcopy(conversation.messages),
        )

    def run(self, question: str) -> Result:
        """Single-shot: run a question with a fresh conversation."""
        return self._run(Conversation(seed=self._system_content()), question)

    def ask(self, question: str) -> Result:
        """Conversational: share context across questions (like the REPL)."""
        if self._conversation is None:
            self._conversation = Conversation(seed=self._system_content())
        return self._run(self._conversation, question)

    def reset(self) -> None:
        """Drop the shared conversation. The next ask() starts from the seed."""
        if self._conversation is not None:
            self._conversation.reset()
