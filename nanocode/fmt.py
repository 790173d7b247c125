"""ANSI-formatted stderr output using Rich."""

import json
import re

from rich.console import Console
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)
_debug = False

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")

CALL_PREVIEW_CHARS = 50
RESULT_PREVIEW_CHARS = 60


def init(*, color: bool = False, no_color: bool = False, debug: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console, _debug
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)
    _debug = debug


def debug_enabled() -> bool:
    return _debug


def render_markdown(text: str) -> Text:
    """Render **bold** spans; everything else is printed verbatim."""
    out = Text()
    pos = 0
    for m in _BOLD_RE.finditer(text):
        out.append(text[pos : m.start()])
        out.append(m.group(1), style="bold")
        pos = m.end()
    out.append(text[pos:])
    return out


# -- Session structure -------------------------------------------------------


def intro(model: str) -> None:
    line = Text()
    line.append("nanocode", style="bold")
    line.append(f" - minimal coding agent in Python ({model})", style="dim")
    _console.print(line)
    _console.print(Text("  /new   new conversation", style="dim"))
    _console.print(Text("  /exit  quit", style="dim"))


def rule() -> None:
    width = min(_console.width or 80, 80)
    _console.print(Rule(style="dim"), width=width)


def help_text() -> None:
    _console.print(
        Text(
            "Available commands:\n"
            "  /help          Show this help message\n"
            "  /new, /clear   Start a new conversation\n"
            "  /exit, /quit   Exit",
            style="dim",
        )
    )


def conversation_cleared() -> None:
    _console.print(Text("\n● Conversation cleared", style="magenta"))


def goodbye(msg: str = "Goodbye!") -> None:
    _console.print(Text(msg))


# -- Model calls -------------------------------------------------------------


def llm_spinner(label: str = "thinking..."):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(Text(f"  {label}", style="dim"), spinner="dots")


def llm_usage(elapsed: float, usage=None) -> None:
    text = Text(f"  Thought for {elapsed:.0f}s", style="dim")
    if usage is not None:
        text.append(
            f" ↑{usage.prompt_tokens} ↓{usage.completion_tokens}", style="dim"
        )
        if usage.cost:
            text.append(f" ${usage.cost:.6f}", style="dim")
    _console.print(text)


def safety_limit(max_turns: int) -> None:
    _console.print(
        Text(f"● Stopped after {max_turns} loops (safety limit)", style="magenta")
    )


# -- Tool calls --------------------------------------------------------------


def display_tool_name(name: str) -> str:
    """Capitalize a tool name for display, dropping underscores."""
    if not name:
        return name
    return name[0].upper() + name[1:].replace("_", "")


def args_preview(args: dict) -> str:
    """First argument value on one line, truncated for display."""
    if not args:
        return ""
    one_line = str(next(iter(args.values()))).replace("\n", " ")
    if len(one_line) > CALL_PREVIEW_CHARS:
        return one_line[:CALL_PREVIEW_CHARS] + "..."
    return one_line


def result_preview(result: str) -> str:
    """First line of a tool result, with a count of the lines left out."""
    lines = result.split("\n")
    preview = lines[0][:RESULT_PREVIEW_CHARS]
    if len(lines) > 1:
        preview += f" ... +{len(lines) - 1} lines"
    elif len(lines[0]) > RESULT_PREVIEW_CHARS:
        preview += "..."
    return preview


def tool_call(name: str, args: dict) -> None:
    line = Text("\n  ")
    line.append(display_tool_name(name), style="cyan")
    line.append("(")
    line.append(args_preview(args), style="dim")
    line.append(")")
    _console.print(line)


def tool_result(result: str) -> None:
    _console.print(Text(f"  ⎿  {result_preview(result)}", style="dim"))


def tool_error(name: str, msg: str) -> None:
    header = Text()
    header.append(f"  ✗ {name}", style="bold red")
    header.append(f"  {result_preview(msg)}", style="red")
    _console.print(header)


def tool_denied(name: str) -> None:
    _console.print(Text(f"  ⎿  {name} denied by user", style="yellow"))


# -- Assistant text ----------------------------------------------------------


def assistant_text(text: str) -> None:
    line = Text("\n")
    line.append("● ", style="green")
    line.append_text(render_markdown(text))
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("\n● Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def context_stats(label: str, tokens: int) -> None:
    _console.print(Text(f"  {label}: ~{tokens} tokens", style="dim"))


# -- Debug output (DEBUG=true / --debug) -------------------------------------


def format_duration(seconds: float) -> str:
    ms = int(seconds * 1000)
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    mins = ms // 60_000
    secs = (ms % 60_000) // 1000
    if ms < 3_600_000:
        return f"{mins}m {secs}s"
    hours = ms // 3_600_000
    remain_mins = (ms % 3_600_000) // 60_000
    return f"{hours}h {remain_mins}m {secs}s"


def debug(label: str, data) -> None:
    if not _debug:
        return
    _console.print(Text(f"[DEBUG] {label}:", style="bright_black"))
    dumped = json.dumps(data, indent=2, default=str, ensure_ascii=False)
    _console.print(Text(dumped, style="bright_black"))


def debug_cost(usage) -> None:
    if not _debug or usage is None:
        return
    cost = f" ${usage.cost:.6f}" if usage.cost is not None else ""
    _console.print(
        Text(
            f"[COST] ↑{usage.prompt_tokens} ↓{usage.completion_tokens} "
            f"Σ{usage.total_tokens}{cost}",
            style="bright_black",
        )
    )


def debug_time(label: str, seconds: float) -> None:
    if not _debug:
        return
    _console.print(
        Text(f"[TIME] {label}: {format_duration(seconds)}", style="bright_black")
    )
