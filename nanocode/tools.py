"""Tool definitions and implementations for the coding agent."""

import json
import os
import re
import subprocess
import sys
from pathlib import Path, PurePosixPath, PureWindowsPath

from .edit import replace

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "read",
            "description": "Read file with line numbers",
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path"},
                    "offset": {
                        "type": "integer",
                        "description": "Start line (0-indexed)",
                    },
                    "limit": {"type": "integer", "description": "Number of lines"},
                },
                "required": ["path"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "write",
            "description": "Write content to file",
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path"},
                    "content": {"type": "string", "description": "Content to write"},
                },
                "required": ["path", "content"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "edit",
            "description": (
                "Replace old with new in file (old must be unique unless all=true)"
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path"},
                    "old": {"type": "string", "description": "String to replace"},
                    "new": {"type": "string", "description": "Replacement string"},
                    "all": {
                        "type": "boolean",
                        "description": "Replace all occurrences",
                    },
                },
                "required": ["path", "old", "new"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "bash",
            "description": "Run shell command (30s timeout)",
            "parameters": {
                "type": "object",
                "properties": {
                    "cmd": {"type": "string", "description": "Command to execute"},
                },
                "required": ["cmd"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "glob",
            "description": (
                "Find files matching glob pattern (e.g., **/*.py, src/**/*.js)"
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "pattern": {
                        "type": "string",
                        "description": "Glob pattern to match files",
                    },
                    "path": {
                        "type": "string",
                        "description": "Directory to search in (default: .)",
                    },
                },
                "required": ["pattern"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "grep",
            "description": "Search file contents with regex pattern",
            "parameters": {
                "type": "object",
                "properties": {
                    "pattern": {
                        "type": "string",
                        "description": "Regex pattern to search for",
                    },
                    "path": {
                        "type": "string",
                        "description": "Directory to search in (default: .)",
                    },
                    "include": {
                        "type": "string",
                        "description": "Glob pattern to filter files (e.g., *.py)",
                    },
                },
                "required": ["pattern"],
            },
        },
    },
]

# Tools with destructive or externally visible side effects.
DANGEROUS_TOOLS = frozenset({"write", "edit", "bash"})

DENIED_RESULT = "denied by user"
EMPTY_OUTPUT = "(empty)"
NO_MATCHES = "(no matches)"

BASH_TIMEOUT = 30
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB
EXCLUDED_DIRS = frozenset({"node_modules", ".git", "__pycache__", ".venv"})

_KILL_WAIT_TIMEOUT = 5  # seconds to wait for pipes to drain after a kill


def needs_confirmation(name: str) -> bool:
    """Return True if a call to `name` must be approved by the operator."""
    return name in DANGEROUS_TOOLS


def _resolve(path: str, base_dir: str) -> Path:
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return Path(base_dir) / p


def _is_absolute_pattern(pattern: str) -> bool:
    return PurePosixPath(pattern).is_absolute() or PureWindowsPath(pattern).is_absolute()


def _glob_paths(pattern: str, root: Path) -> list[str]:
    """Expand pattern under root, returning sorted POSIX paths relative to root."""
    matched = []
    for p in root.glob(pattern):
        rel = p.relative_to(root)
        if any(part in EXCLUDED_DIRS for part in rel.parts):
            continue
        matched.append(rel.as_posix())
    matched.sort()
    return matched


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _read_file(
    path: str, base_dir: str = ".", offset: int = 0, limit: int | None = None
) -> str:
    """Return lines of a file prefixed with their 1-based line numbers."""
    resolved = _resolve(path, base_dir)
    if not resolved.exists():
        return f"error: file not found: {path}"
    if resolved.is_dir():
        return f"error: path is a directory: {path}"
    if offset < 0:
        return f"error: offset must not be negative, got {offset}"
    if limit is not None and limit < 0:
        return f"error: limit must not be negative, got {limit}"

    try:
        text = resolved.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        return f"error: failed to decode {path} as UTF-8: {exc}"

    lines = text.split("\n")
    # A zero or missing limit reads to the end of the file.
    end = offset + limit if limit else len(lines)

    return "\n".join(
        f"{offset + i + 1:>4}| {line}" for i, line in enumerate(lines[offset:end])
    )


def _write_file(path: str, content: str, base_dir: str = ".") -> str:
    """Create or truncate a file with content."""
    resolved = _resolve(path, base_dir)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    resolved.write_text(content, encoding="utf-8")
    return "ok"


def _edit_file(
    path: str, old: str, new: str, base_dir: str = ".", all: bool = False
) -> str:
    """Replace old with new in an existing file."""
    resolved = _resolve(path, base_dir)
    if not resolved.exists():
        return f"error: file not found: {path}"
    if resolved.is_dir():
        return f"error: path is a directory: {path}"

    # newline="" keeps CRLF and LF endings exactly as stored.
    with open(resolved, encoding="utf-8", newline="") as f:
        content = f.read()
    try:
        updated = replace(content, old, new, replace_all=all)
    except ValueError as exc:
        return f"error: {exc}"

    with open(resolved, "w", encoding="utf-8", newline="") as f:
        f.write(updated)
    return "ok"


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants, then drain its pipes.

    On Unix the shell runs in its own session, so killing the process group
    also takes down anything it spawned.
    """
    if sys.platform != "win32":
        import signal

        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    else:
        try:
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired):
            pass
    try:
        proc.kill()
    except OSError:
        pass
    try:
        proc.communicate(timeout=_KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        pass  # a detached grandchild still holds the pipe; give up on it


def _bash(cmd: str, base_dir: str = ".", timeout: int | None = None) -> str:
    """Run a shell command with a hard wall-clock timeout."""
    if timeout is None:
        timeout = BASH_TIMEOUT

    if sys.platform == "win32":
        shell_cmd = ["cmd.exe", "/c", cmd]
    else:
        shell_cmd = ["/bin/sh", "-c", cmd]

    popen_kwargs: dict = dict(
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        cwd=base_dir,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    if sys.platform != "win32":
        popen_kwargs["start_new_session"] = True

    try:
        proc = subprocess.Popen(shell_cmd, **popen_kwargs)
    except OSError as e:
        return f"error: failed to start shell command: {e}"

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_tree(proc)
        return f"(timed out after {timeout}s)"
    except BaseException:
        # Ctrl-C does not reach the detached process group.
        _kill_process_tree(proc)
        raise

    output = ((stdout or "") + (stderr or "")).strip()
    if proc.returncode != 0:
        header = f"error: exit code {proc.returncode}"
        return f"{header}\n{output}" if output else header
    return output or EMPTY_OUTPUT


def _glob(pattern: str, base_dir: str = ".", path: str = ".") -> str:
    """List paths matching a glob pattern under a directory."""
    if _is_absolute_pattern(pattern):
        return (
            f"error: pattern {pattern!r} must be relative; "
            "use path to choose the directory"
        )
    root = _resolve(path, base_dir)
    if not root.is_dir():
        return f"error: not a directory: {path}"

    matches = _glob_paths(pattern, root)
    return "\n".join(matches) if matches else NO_MATCHES


def _grep(
    pattern: str, base_dir: str = ".", path: str = ".", include: str = "**/*"
) -> str:
    """Search the contents of files under a directory for a regex."""
    try:
        regex = re.compile(pattern)
    except re.error as exc:
        return f"error: invalid regex {pattern!r}: {exc}"
    if _is_absolute_pattern(include):
        return f"error: include pattern {include!r} must be relative"
    root = _resolve(path, base_dir)
    if not root.is_dir():
        return f"error: not a directory: {path}"

    results: list[str] = []
    for rel in _glob_paths(include, root):
        filepath = root / rel
        # Directories, binaries and unreadable files are skipped.
        try:
            if filepath.is_dir():
                continue
            data = filepath.read_bytes()
        except OSError:
            continue
        if b"\x00" in data[:BINARY_CHECK_BYTES]:
            continue
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            continue

        for line_no, line in enumerate(text.split("\n"), start=1):
            if regex.search(line):
                results.append(f"{rel}:{line_no}: {line}")

    return "\n".join(results) if results else NO_MATCHES


TOOL_HANDLERS = {
    "read": _read_file,
    "write": _write_file,
    "edit": _edit_file,
    "bash": _bash,
    "glob": _glob,
    "grep": _grep,
}

_SCHEMAS = {tool["function"]["name"]: tool["function"]["parameters"] for tool in TOOLS}


# ---------------------------------------------------------------------------
# Argument handling and dispatch
# ---------------------------------------------------------------------------


def parse_arguments(raw_args) -> tuple[dict | None, str | None]:
    """Parse a tool call's JSON argument text.

    Returns (args, None) on success or (None, error_result) on failure.
    """
    if raw_args is None or (isinstance(raw_args, str) and not raw_args.strip()):
        return {}, None
    try:
        args = json.loads(raw_args)
    except (json.JSONDecodeError, TypeError) as e:
        return None, f"error: invalid tool arguments JSON ({e})"
    if not isinstance(args, dict):
        return None, "error: tool arguments must be a JSON object"
    return args, None


def _coerce(prop: str, expected: str, value):
    if expected == "string":
        if isinstance(value, str):
            return value
    elif expected == "integer":
        # bool is a subclass of int; reject it explicitly.
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
            return int(value)
    elif expected == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
    else:
        return value
    raise ValueError(
        f"argument {prop!r} must be of type {expected}, got {type(value).__name__}"
    )


def validate_arguments(name: str, args: dict) -> dict:
    """Check args against the tool's schema and coerce primitive types.

    Unknown properties are dropped; null optional properties count as absent.
    Raises ValueError describing the first violation.
    """
    schema = _SCHEMAS[name]
    properties = schema.get("properties", {})
    validated = {}
    for prop, spec in properties.items():
        value = args.get(prop)
        if value is None:
            continue
        validated[prop] = _coerce(prop, spec.get("type", ""), value)
    missing = [p for p in schema.get("required", []) if p not in validated]
    if missing:
        names = ", ".join(repr(p) for p in missing)
        raise ValueError(f"missing required argument {names} for tool {name!r}")
    return validated


def dispatch(name: str, args: dict, base_dir: str = ".") -> str:
    """Route parsed arguments to a tool handler. Never raises."""
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return f'error: unknown tool "{name}"'
    try:
        validated = validate_arguments(name, args)
    except ValueError as e:
        return f"error: {e}"
    try:
        return handler(base_dir=base_dir, **validated)
    except Exception as e:
        return f"error: {e}"


def execute(name: str, raw_args, base_dir: str = ".") -> str:
    """Parse raw JSON arguments and run the named tool. Never raises."""
    args, error = parse_arguments(raw_args)
    if error is not None:
        return error
    return dispatch(name, args, base_dir)
