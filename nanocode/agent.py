import argparse
import contextlib
import json
import sys
import time
from datetime import datetime
from importlib import metadata
from pathlib import Path

from . import fmt
from .config import (
    _UNSET,
    apply_config_to_args,
    generate_config,
    load_config,
    load_env,
)
from .conversation import Conversation, ToolCall, tool_message, user_message
from .llm import DEFAULT_API_URL, call_llm
from .report import AgentError, ConfigError, ReportCollector
from .tools import (
    DENIED_RESULT,
    TOOLS,
    dispatch,
    needs_confirmation,
    parse_arguments,
)

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"

# prevent infinite tool-call loops
MAX_AGENT_LOOPS = 10

INTERRUPTED_RESULT = "error: interrupted by user"
NOT_EXECUTED_RESULT = "error: not executed, the model ended its turn"

_encoder = None


def estimate_tokens(messages: list, tools: list | None = None) -> int:
    """Count tokens across all messages using tiktoken."""
    global _encoder
    if _encoder is None:
        import tiktoken

        _encoder = tiktoken.get_encoding("cl100k_base")

    total = 0
    for m in messages:
        content = m.get("content") or ""
        for tc in m.get("tool_calls") or []:
            fn = tc.get("function", {})
            content += fn.get("name", "") + (fn.get("arguments") or "")
        total += len(_encoder.encode(content))
    if tools:
        total += len(_encoder.encode(json.dumps(tools)))
    # Per-message overhead (role, separators), ~4 tokens each
    total += 4 * len(messages)
    return total


def build_system_prompt(
    system_prompt: str | None = None, no_system_prompt: bool = False
) -> str | None:
    """Return the system message content, or None to omit it."""
    if no_system_prompt:
        return None
    if system_prompt:
        return system_prompt
    content = DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8").strip()
    now = datetime.now().astimezone()
    return f"{content}\n\nCurrent date and time: {now.strftime('%Y-%m-%d %H:%M %Z')}"


# ---------------------------------------------------------------------------
# Confirmation gate
# ---------------------------------------------------------------------------


def ask_confirmation(prompt_session, name: str, args: dict) -> bool:
    """Block until the operator approves or denies a dangerous tool call.

    Only "y" or "yes" approve. EOF is a denial; Ctrl-C propagates.
    """
    from prompt_toolkit.formatted_text import FormattedText

    prompt_text = FormattedText(
        [
            ("fg:ansimagenta", "\n  Confirm execution?"),
            ("", " [y/"),
            ("bold", "N"),
            ("", "] "),
        ]
    )
    try:
        answer = prompt_session.prompt(prompt_text)
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


class ConsoleConfirm:
    """Confirmation callable backed by a prompt_toolkit session.

    The session is created on first use unless one is supplied.
    """

    def __init__(self, prompt_session=None):
        self._session = prompt_session

    def __call__(self, name: str, args: dict) -> bool:
        if self._session is None:
            from prompt_toolkit import PromptSession

            self._session = PromptSession()
        return ask_confirmation(self._session, name, args)


def deny_all(name: str, args: dict) -> bool:
    return False


# ---------------------------------------------------------------------------
# Agent loop
# ---------------------------------------------------------------------------


def handle_tool_call(tool_call: dict, base_dir, confirm, *, yolo=False, verbose=True):
    """Execute a single tool call and return (tool_msg, metadata).

    tool_msg is the message dict for the conversation.
    metadata has stable keys: name, arguments, elapsed, succeeded, denied.
    """
    call = ToolCall.from_dict(tool_call)
    args, error = parse_arguments(call.arguments)

    if verbose:
        fmt.tool_call(
            call.name, args if error is None else {"malformedJSON": call.arguments}
        )

    denied = False
    t0 = time.monotonic()
    if error is not None:
        result = error
    elif not yolo and needs_confirmation(call.name) and not confirm(call.name, args):
        result = DENIED_RESULT
        denied = True
    else:
        result = dispatch(call.name, args, base_dir)
    elapsed = time.monotonic() - t0

    succeeded = not denied and not result.startswith("error:")
    if verbose:
        if denied:
            fmt.tool_denied(call.name)
        elif not succeeded:
            fmt.tool_error(call.name, result)
        else:
            fmt.tool_result(result)

    return (
        tool_message(call.id, result),
        {
            "name": call.name,
            "arguments": args,
            "elapsed": elapsed,
            "succeeded": succeeded,
            "denied": denied,
        },
    )


def run_agent_loop(
    conversation: Conversation,
    user_text: str,
    tools: list = TOOLS,
    *,
    model: str,
    api_key: str,
    api_url: str = DEFAULT_API_URL,
    base_dir: str = ".",
    max_turns: int = MAX_AGENT_LOOPS,
    confirm=deny_all,
    yolo: bool = False,
    verbose: bool = True,
    report: ReportCollector | None = None,
) -> tuple[str | None, bool]:
    """Run one user turn: call the model and its tools until it stops.

    Appends the user message, then every assistant and tool message, to
    `conversation`. Returns (final_answer, exhausted); exhausted is True when
    the safety limit of max_turns model calls was reached.
    """
    conversation.append(user_message(user_text))

    last_text = None
    turns = 0
    while turns < max_turns:
        turns += 1
        if fmt.debug_enabled():
            fmt.context_stats(
                f"Context before call {turns}",
                estimate_tokens(conversation.messages, tools),
            )
            fmt.debug("LLM Request", {"model": model, "messages": conversation.messages})

        t0 = time.monotonic()
        spinner = fmt.llm_spinner() if verbose else contextlib.nullcontext()
        with spinner:
            msg, finish_reason, usage = call_llm(
                conversation.messages,
                tools,
                model=model,
                api_key=api_key,
                api_url=api_url,
            )
        elapsed = time.monotonic() - t0

        if verbose:
            fmt.llm_usage(elapsed, usage)
        fmt.debug("LLM Response", {"message": msg, "finish_reason": finish_reason})
        fmt.debug_time("LLM", elapsed)
        fmt.debug_cost(usage)
        if report:
            report.record_llm_call(turns, elapsed, finish_reason, usage)

        # The reply goes into history before any of its tool calls run.
        conversation.append(msg)

        content = (msg.get("content") or "").strip()
        tool_calls = msg.get("tool_calls")

        if finish_reason == "stop" or not tool_calls:
            if tool_calls:
                conversation.resolve_pending(NOT_EXECUTED_RESULT)
            return content, False

        if content:
            last_text = content
            if verbose:
                fmt.assistant_text(content)

        try:
            for tool_call in tool_calls:
                tool_msg, meta = handle_tool_call(
                    tool_call, base_dir, confirm, yolo=yolo, verbose=verbose
                )
                conversation.append(tool_msg)
                if report:
                    report.record_tool_call(
                        turns,
                        meta["name"],
                        meta["arguments"],
                        meta["succeeded"],
                        meta["elapsed"],
                        len(tool_msg["content"]),
                        denied=meta["denied"],
                        error=tool_msg["content"] if not meta["succeeded"] else None,
                    )
        except KeyboardInterrupt:
            conversation.resolve_pending(INTERRUPTED_RESULT)
            raise

    if verbose:
        fmt.safety_limit(max_turns)
    return last_text, True


# ---------------------------------------------------------------------------
# REPL
# ---------------------------------------------------------------------------


def repl_loop(
    conversation: Conversation,
    tools: list = TOOLS,
    *,
    model: str,
    api_key: str,
    api_url: str = DEFAULT_API_URL,
    base_dir: str = ".",
    max_turns: int = MAX_AGENT_LOOPS,
    yolo: bool = False,
    verbose: bool = True,
) -> None:
    """Interactive read-eval-print loop."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import InMemoryHistory

    session = PromptSession(history=InMemoryHistory())
    prompt_text = FormattedText([("bold", "❯ ")])
    confirm = ConsoleConfirm()

    if verbose:
        fmt.intro(model)

    while True:
        try:
            print(file=sys.stderr)  # blank line before prompt
            fmt.rule()
            line = session.prompt(prompt_text)
            fmt.rule()
        except EOFError:
            fmt.goodbye()
            break
        except KeyboardInterrupt:
            fmt.goodbye("No hello, no goodbye!")
            break

        line = line.strip()
        if not line:
            continue

        if line in ("/exit", "/quit"):
            fmt.goodbye()
            break
        if line == "/help":
            fmt.help_text()
            continue
        if line in ("/new", "/clear"):
            conversation.reset()
            fmt.conversation_cleared()
            continue

        try:
            answer, exhausted = run_agent_loop(
                conversation,
                line,
                tools,
                model=model,
                api_key=api_key,
                api_url=api_url,
                base_dir=base_dir,
                max_turns=max_turns,
                confirm=confirm,
                yolo=yolo,
                verbose=verbose,
            )
        except KeyboardInterrupt:
            fmt.warning("interrupted, turn abandoned.")
            continue
        except AgentError as e:
            fmt.error(str(e))
            continue

        if answer is not None:
            print(answer)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser():
    """Build and return the argument parser.

    Options that can also come from config files or the environment default
    to the _UNSET sentinel so apply_config_to_args() can tell them apart.
    """
    parser = argparse.ArgumentParser(
        prog="nanocode",
        usage="%(prog)s [options] [question]",
        description="A minimal coding agent: the model reads, edits and runs "
        "things in your project through tool calls.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question",
        nargs="?",
        default=None,
        help="Run this single task and exit (omit to start the interactive prompt).",
    )
    parser.add_argument(
        "--repl",
        action="store_true",
        help="Stay in the interactive prompt after answering the question.",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="Model identifier (env: MODEL).",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=_UNSET,
        help="API key for the endpoint (env: OPENROUTER_API_KEY).",
    )
    parser.add_argument(
        "--api-url",
        type=str,
        default=_UNSET,
        help="Chat completions endpoint URL (env: API_URL).",
    )
    parser.add_argument(
        "--max-turns",
        type=int,
        default=_UNSET,
        help=f"Maximum model calls per turn (default: {MAX_AGENT_LOOPS}).",
    )

    prompt_group = parser.add_mutually_exclusive_group()
    prompt_group.add_argument(
        "--system-prompt",
        type=str,
        default=_UNSET,
        help="System prompt to use instead of the built-in one.",
    )
    prompt_group.add_argument(
        "--no-system-prompt",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Omit the system message entirely.",
    )

    parser.add_argument(
        "--base-dir",
        type=str,
        default=".",
        help="Directory relative tool paths and shell commands run in (default: .).",
    )
    parser.add_argument(
        "--yolo",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Run write, edit and bash calls without asking for confirmation.",
    )
    parser.add_argument(
        "--debug",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Print requests, responses, timing and cost (env: DEBUG=true).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Suppress all diagnostics; only print answers.",
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        metavar="FILE",
        help="Write a JSON report of the run to FILE (single-task mode only).",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )

    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented config template and exit.",
    )
    parser.add_argument(
        "--project",
        action="store_true",
        help="With --init-config, print the project (nanocode.toml) template.",
    )

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("nanocode")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config(project=args.project))
        sys.exit(0)

    if args.report and not args.question:
        parser.error("--report requires a question")
    if args.report and args.repl:
        parser.error("--report is incompatible with --repl")

    try:
        apply_config_to_args(args, load_config(Path(args.base_dir)), env=load_env())
    except ConfigError as e:
        fmt.error(str(e))
        sys.exit(1)

    if args.max_turns < 1:
        parser.error("--max-turns must be at least 1")

    args.verbose = not args.quiet
    fmt.init(color=args.color, no_color=args.no_color, debug=args.debug)

    report = ReportCollector() if args.report else None

    def _write_report(outcome, answer=None, exit_code=0, error_message=None):
        if not report:
            return
        report.finalize(
            task=args.question or "",
            model=args.model,
            settings={
                "max_turns": args.max_turns,
                "yolo": args.yolo,
                "api_url": args.api_url,
            },
            outcome=outcome,
            answer=answer,
            exit_code=exit_code,
            turns=report.max_turn_seen,
            error_message=error_message,
        )
        try:
            report.write(args.report)
        except OSError as e:
            fmt.error(f"Failed to write report to {args.report}: {e}")
            return
        if args.verbose:
            fmt.info(f"Report written to {args.report}")

    try:
        _run_main(args, report, _write_report)
    except AgentError as e:
        fmt.error(str(e))
        _write_report("error", exit_code=1, error_message=str(e))
        sys.exit(1)


def _run_main(args, report, _write_report):
    if not args.api_key:
        raise ConfigError(
            "Missing OPENROUTER_API_KEY environment variable (or --api-key)"
        )

    conversation = Conversation(
        seed=build_system_prompt(args.system_prompt, args.no_system_prompt)
    )
    loop_kwargs = dict(
        model=args.model,
        api_key=args.api_key,
        api_url=args.api_url,
        base_dir=args.base_dir,
        max_turns=args.max_turns,
        yolo=args.yolo,
        verbose=args.verbose,
    )

    if args.question and not args.repl:
        answer, exhausted = run_agent_loop(
            conversation,
            args.question,
            TOOLS,
            confirm=ConsoleConfirm(),
            report=report,
            **loop_kwargs,
        )
        if answer:
            print(answer)
        _write_report(
            "exhausted" if exhausted else "success",
            answer=answer,
            exit_code=2 if exhausted else 0,
        )
        if exhausted:
            sys.exit(2)
        return

    if args.question:
        answer, exhausted = run_agent_loop(
            conversation, args.question, TOOLS, confirm=ConsoleConfirm(), **loop_kwargs
        )
        if answer:
            print(answer)

    repl_loop(conversation, TOOLS, **loop_kwargs)


if __name__ == "__main__":
    main()
