"""ReplaySandbox - deterministic tool execution for historical episodes.

The sandbox stands in for the live tool layer while an agent re-runs a
recorded episode. It does two things:

1. Trace alignment: every call is matched against the episode's recorded
   traces (exact args, then same tool, then strictly sequential) so the
   recorded output can be returned and any divergence is recorded as drift.
2. Simulation: fs_* and git_* tools, and shell commands that proxy for
   them, run against an in-memory VirtualWorkspace instead of being replayed
   verbatim. Alignment for simulated tools is advisory only.

Usage:
    sandbox = ReplaySandbox(store.get_traces(episode_id))
    result = await sandbox.call_tool("fs_read_file", {"path": "README.md"})
    if sandbox.drift_detected:
        ...
"""

from __future__ import annotations

import json
import logging
import posixpath
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shadowlab.memory.episode import Trace, TraceStatus
from shadowlab.replay.errors import ReplayExhausted, ReplayToolFailed

logger = logging.getLogger(__name__)

VIRTUAL_ROOT = "/workspace"

FS_TOOLS = frozenset({"fs_read_file", "fs_write_file", "fs_list_directory"})

GIT_TOOLS = frozenset(
    {"git_status", "git_log", "git_diff", "git_add", "git_commit", "git_push", "git_pull"}
)

HIGH_RISK_TOOLS = frozenset(
    {
        "shell_execute",
        "fs_write_file",
        "fs_delete_file",
        "fs_delete_directory",
        "fs_move",
        "fs_copy",
        "git_push",
    }
)

HUMAN_INTERRUPT_TOOL = "ask_user"

_DRIVE_RE = re.compile(r"^([a-zA-Z]):(/.*)?$")
_GIT_COMMIT_RE = re.compile(r"""^git commit -m\s+["'](.+)["']$""")
_GIT_LOG_COUNT_RE = re.compile(r"-n\s+(\d+)")


class TextContent(BaseModel):
    type: str = "text"
    text: str = ""


class ToolResult(BaseModel):
    """Tool call result in the content-block shape live tools return."""

    model_config = ConfigDict(populate_by_name=True)

    content: list[TextContent] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def text_result(cls, text: str, is_error: bool = False) -> "ToolResult":
        return cls(content=[TextContent(text=text)], is_error=is_error)

    @property
    def text(self) -> str:
        return "\n".join(c.text for c in self.content)


class DriftType(StrEnum):
    TOOL = "tool"
    ARGS = "args"


class DriftEvent(BaseModel):
    """One divergence between the replayed call sequence and history."""

    model_config = ConfigDict(frozen=True)

    index: int
    expected: str
    actual: str
    type: DriftType


class Commit(BaseModel):
    hash: str
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass
class GitChanges:
    modified: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    def all(self) -> set[str]:
        return set(self.modified) | set(self.created) | set(self.deleted)


def canonical_args(value: Any) -> str:
    """Serialize a value with object keys sorted at every depth.

    List order is preserved. Two argument objects built with different key
    insertion order serialize identically.
    """
    if value is None:
        return "null"
    if isinstance(value, dict):
        items = sorted((str(k), v) for k, v in value.items())
        return "{" + ",".join(f"{json.dumps(k)}:{canonical_args(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonical_args(v) for v in value) + "]"
    return json.dumps(value, default=str)


def normalize_path(raw_path: str, root: str = VIRTUAL_ROOT) -> str:
    """Map posix, Windows and relative paths into one posix namespace.

    Drive letters become a lower-cased top segment (``C:\\work`` -> ``/c/work``);
    relative paths resolve under ``root``.
    """
    source = (raw_path or "").replace("\\", "/")
    if not source:
        return root

    drive = _DRIVE_RE.match(source)
    if drive:
        rest = drive.group(2) or "/"
        return _posix_normalize(f"/{drive.group(1).lower()}{rest}")

    if source.startswith("/"):
        return _posix_normalize(source)

    return _posix_normalize(posixpath.join(root, source))


def _posix_normalize(path: str) -> str:
    # normpath keeps a leading "//", collapse it first
    return posixpath.normpath(re.sub(r"/+", "/", path))


def _parse_json(raw: str, fallback: Any) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return fallback


def _str_arg(args: Any, key: str, default: str = "") -> str:
    if isinstance(args, dict) and isinstance(args.get(key), str):
        return args[key]
    return default


def normalize_tool_output(raw_output: str) -> ToolResult:
    """Turn a stored tool output (JSON or plain text) into a ToolResult."""
    parsed = _parse_json(raw_output, raw_output)

    if isinstance(parsed, dict) and isinstance(parsed.get("content"), list):
        try:
            return ToolResult.model_validate(parsed)
        except ValidationError:
            pass

    if isinstance(parsed, str):
        return ToolResult.text_result(parsed)

    return ToolResult.text_result(json.dumps(parsed))


@dataclass
class VirtualWorkspace:
    """In-memory filesystem and git state owned by a single replay.

    A path is in at most one of created/modified/deleted relative to head.
    """

    files: dict[str, str] = field(default_factory=dict)
    head: dict[str, str] = field(default_factory=dict)
    staged: set[str] = field(default_factory=set)
    commits: list[Commit] = field(default_factory=list)

    def snapshot_head(self) -> None:
        """Make the current files the committed baseline."""
        self.head = dict(self.files)
        self.staged = set()
        self.commits = [Commit(hash="replay-init", message="Initial replay snapshot")]

    def compute_changes(self) -> GitChanges:
        changes = GitChanges()
        for path in sorted(set(self.files) | set(self.head)):
            current = self.files.get(path)
            committed = self.head.get(path)
            if current is None and committed is not None:
                changes.deleted.append(path)
            elif current is not None and committed is None:
                changes.created.append(path)
            elif current is not None and current != committed:
                changes.modified.append(path)
        return changes

    def list_entries(self, directory: str) -> list[tuple[str, str]]:
        """Immediate children of a directory as sorted (name, "dir"|"file")."""
        prefix = directory if directory.endswith("/") else f"{directory}/"
        entries: dict[str, str] = {}

        for path in self.files:
            if path == directory or not path.startswith(prefix):
                continue
            relative = path[len(prefix) :]
            head, _, rest = relative.partition("/")
            if not head:
                continue
            if entries.get(head) == "dir":
                continue
            entries[head] = "dir" if rest else "file"

        return sorted(entries.items())


class ReplaySandbox:
    """Tool executor that replays recorded traces against a virtual world.

    Each replay owns its own sandbox. Calls must be made sequentially since
    simulated tools depend on prior state.
    """

    def __init__(
        self,
        traces: list[Trace],
        workspace: VirtualWorkspace | None = None,
    ) -> None:
        self._traces = sorted(traces, key=lambda t: t.step_index)
        self._cursor = 0
        self._drifts: list[DriftEvent] = []

        self._invocation_count = 0
        self._risk_event_count = 0
        self._human_interrupt_count = 0

        self.workspace = workspace or VirtualWorkspace()
        self._seed_workspace()
        self.workspace.snapshot_head()

    @property
    def invocation_count(self) -> int:
        return self._invocation_count

    @property
    def risk_event_count(self) -> int:
        return self._risk_event_count

    @property
    def human_interrupt_count(self) -> int:
        return self._human_interrupt_count

    @property
    def drifts(self) -> list[DriftEvent]:
        return list(self._drifts)

    @property
    def drift_detected(self) -> bool:
        return bool(self._drifts)

    async def call_tool(self, name: str, args: dict[str, Any] | None = None) -> ToolResult:
        """Execute a tool call against the replay.

        Raises:
            ReplayExhausted: no trace can satisfy a non-simulated call.
            ReplayToolFailed: the matched trace failed historically.
        """
        args = args if args is not None else {}
        self._record_invocation(name)

        if name in FS_TOOLS:
            return self._execute_fs_tool(name, args)

        if name == "shell_execute":
            simulated = self._execute_shell_tool(args)
            if simulated is not None:
                return simulated

        if name in GIT_TOOLS:
            return self._execute_git_tool(name, args)

        trace = self._consume_trace(name, args, allow_sequential=True)
        if trace is None:
            raise ReplayExhausted(name)

        output = normalize_tool_output(trace.tool_output)
        if trace.status == TraceStatus.FAILED:
            raise ReplayToolFailed(name, output.text.strip())

        return output

    def _record_invocation(self, name: str) -> None:
        self._invocation_count += 1
        if name in HIGH_RISK_TOOLS:
            self._risk_event_count += 1
        if name == HUMAN_INTERRUPT_TOOL:
            self._human_interrupt_count += 1

    # -- filesystem ---------------------------------------------------------

    def _execute_fs_tool(self, name: str, args: dict[str, Any]) -> ToolResult:
        self._consume_trace(name, args, allow_sequential=False)
        files = self.workspace.files

        if name == "fs_write_file":
            raw_path = _str_arg(args, "path")
            if not raw_path:
                return ToolResult.text_result("Error: Missing file path.", is_error=True)
            path = normalize_path(raw_path)
            files[path] = _str_arg(args, "content")
            return ToolResult.text_result(f"Successfully wrote to {path}")

        if name == "fs_read_file":
            raw_path = _str_arg(args, "path")
            if not raw_path:
                return ToolResult.text_result("Error: Missing file path.", is_error=True)
            path = normalize_path(raw_path)
            if path in files:
                return ToolResult.text_result(files[path])
            return ToolResult.text_result(f"Error: ENOENT: no such file {path}", is_error=True)

        # fs_list_directory
        path = normalize_path(_str_arg(args, "path", "."))
        return ToolResult.text_result(self._format_listing(path))

    def _format_listing(self, directory: str) -> str:
        return "\n".join(
            f"{'[DIR]' if kind == 'dir' else '[FILE]'} {name}"
            for name, kind in self.workspace.list_entries(directory)
        )

    # -- shell --------------------------------------------------------------

    def _execute_shell_tool(self, args: dict[str, Any]) -> ToolResult | None:
        """Simulate recognized shell commands; None means replay the trace."""
        command = _str_arg(args, "command").strip()
        if not command:
            return ToolResult.text_result(
                "Error executing command: empty command", is_error=True
            )

        if command == "pwd":
            self._consume_trace("shell_execute", args, allow_sequential=False)
            return ToolResult.text_result(VIRTUAL_ROOT)

        if command in ("ls", "dir") or command.startswith(("ls ", "dir ")):
            self._consume_trace("shell_execute", args, allow_sequential=False)
            tokens = [t for t in command.split()[1:] if t and not t.startswith("-")]
            target = tokens[0] if tokens else "."
            return ToolResult.text_result(self._format_listing(normalize_path(target)))

        if command.startswith(("cat ", "type ")):
            self._consume_trace("shell_execute", args, allow_sequential=False)
            path = normalize_path(re.sub(r"^(cat|type)\s+", "", command).strip())
            if path not in self.workspace.files:
                return ToolResult.text_result(f"Error: ENOENT: no such file {path}", is_error=True)
            return ToolResult.text_result(self.workspace.files[path])

        if command.startswith("echo "):
            self._consume_trace("shell_execute", args, allow_sequential=False)
            return ToolResult.text_result(command[5:])

        if command.startswith("git "):
            mapped = map_shell_git_command(command)
            if mapped is None:
                return None
            return self._execute_git_tool(*mapped)

        return None

    # -- git ----------------------------------------------------------------

    def _execute_git_tool(self, name: str, args: dict[str, Any]) -> ToolResult:
        self._consume_trace(name, args, allow_sequential=False)
        ws = self.workspace

        if name == "git_status":
            changes = ws.compute_changes()
            created = [f for f in changes.created if f not in ws.staged]
            payload = {
                "current": "replay",
                "staged": sorted(ws.staged),
                "modified": [f for f in changes.modified if f not in ws.staged],
                "created": created,
                "deleted": [f for f in changes.deleted if f not in ws.staged],
                "not_added": created,
            }
            return ToolResult.text_result(json.dumps(payload, indent=2))

        if name == "git_add":
            files = args.get("files")
            if not isinstance(files, list):
                return ToolResult.text_result(
                    "Error executing git_add: Files must be an array", is_error=True
                )
            changed = ws.compute_changes().all()
            if "." in files:
                ws.staged.update(changed)
            else:
                for entry in files:
                    if not isinstance(entry, str):
                        continue
                    target = normalize_path(entry)
                    ws.staged.update(
                        c for c in changed if c == target or c.startswith(f"{target}/")
                    )
            return ToolResult.text_result(f"Added files: {', '.join(sorted(ws.staged))}")

        if name == "git_diff":
            if args.get("cached"):
                changed = set(ws.staged)
            else:
                changed = ws.compute_changes().all() - ws.staged
            return ToolResult.text_result(
                "\n".join(f"diff -- replay/{path}" for path in sorted(changed))
            )

        if name == "git_commit":
            message = _str_arg(args, "message")
            if not message:
                return ToolResult.text_result(
                    "Error executing git_commit: Message must be a string", is_error=True
                )
            if not ws.staged:
                return ToolResult.text_result(
                    "Error executing git_commit: no staged changes", is_error=True
                )

            for path in ws.staged:
                if path in ws.files:
                    ws.head[path] = ws.files[path]
                else:
                    ws.head.pop(path, None)

            commit = Commit(hash=f"replay-{len(ws.commits)}", message=message)
            ws.commits.append(commit)
            changed_count = len(ws.staged)
            ws.staged.clear()
            return ToolResult.text_result(
                f"Committed: {commit.hash} {changed_count} files changed"
            )

        if name == "git_log":
            try:
                max_count = int(args.get("maxCount") or 10)
            except (TypeError, ValueError):
                max_count = 10
            items = [
                {"hash": c.hash, "date": c.created_at.isoformat(), "message": c.message}
                for c in reversed(ws.commits[-max_count:])
            ]
            return ToolResult.text_result(json.dumps(items, indent=2))

        if name == "git_push":
            return ToolResult.text_result("Push successful")

        if name == "git_pull":
            return ToolResult.text_result("Pull successful")

        return ToolResult.text_result(f"Error executing {name}: Tool not found", is_error=True)

    # -- trace alignment ----------------------------------------------------

    def _consume_trace(
        self,
        name: str,
        args: dict[str, Any],
        allow_sequential: bool,
    ) -> Trace | None:
        target = canonical_args(args)

        index = self._find_trace_index(name, target, exact_args=True)
        if index >= 0:
            return self._consume_at(index, name, target, check_args=False)

        index = self._find_trace_index(name, target, exact_args=False)
        if index >= 0:
            return self._consume_at(index, name, target, check_args=True)

        if not allow_sequential or self._cursor >= len(self._traces):
            return None

        trace = self._traces[self._cursor]
        if trace.tool_name != name:
            self._record_drift(self._cursor, trace.tool_name, name, DriftType.TOOL)
        expected = self._trace_args(trace)
        if expected != target:
            self._record_drift(self._cursor, expected, target, DriftType.ARGS)
        self._cursor += 1
        return trace

    def _consume_at(self, index: int, name: str, target: str, check_args: bool) -> Trace:
        if index != self._cursor and self._cursor < len(self._traces):
            self._record_drift(
                self._cursor, self._traces[self._cursor].tool_name, name, DriftType.TOOL
            )

        trace = self._traces[index]
        if check_args:
            expected = self._trace_args(trace)
            if expected != target:
                self._record_drift(index, expected, target, DriftType.ARGS)

        self._cursor = index + 1
        return trace

    def _find_trace_index(self, name: str, target: str, exact_args: bool) -> int:
        for i in range(self._cursor, len(self._traces)):
            trace = self._traces[i]
            if trace.tool_name != name:
                continue
            if not exact_args or self._trace_args(trace) == target:
                return i
        return -1

    @staticmethod
    def _trace_args(trace: Trace) -> str:
        return canonical_args(_parse_json(trace.tool_args, {}))

    def _record_drift(self, index: int, expected: str, actual: str, kind: DriftType) -> None:
        if kind == DriftType.TOOL:
            logger.warning(
                f"Replay drift: expected tool '{expected}' but got '{actual}' at index {index}"
            )
        else:
            logger.warning(f"Replay drift: arguments mismatch at index {index}")
        self._drifts.append(DriftEvent(index=index, expected=expected, actual=actual, type=kind))

    # -- seeding ------------------------------------------------------------

    def _seed_workspace(self) -> None:
        """Rebuild the file state the episode observed from successful traces."""
        files = self.workspace.files
        for trace in self._traces:
            if trace.status != TraceStatus.SUCCESS:
                continue
            args = _parse_json(trace.tool_args, {})
            raw_path = _str_arg(args, "path")
            if not raw_path:
                continue

            if trace.tool_name == "fs_write_file":
                files[normalize_path(raw_path)] = _str_arg(args, "content")
            elif trace.tool_name == "fs_read_file":
                path = normalize_path(raw_path)
                if path not in files:
                    files[path] = normalize_tool_output(trace.tool_output).text


def map_shell_git_command(command: str) -> tuple[str, dict[str, Any]] | None:
    """Map a ``git ...`` shell command onto a git tool call."""
    cmd = command.strip()
    if cmd == "git status":
        return "git_status", {}
    if cmd == "git log":
        return "git_log", {}
    if cmd.startswith("git log "):
        count = _GIT_LOG_COUNT_RE.search(cmd)
        return "git_log", {"maxCount": int(count.group(1)) if count else 10}
    if cmd == "git diff":
        return "git_diff", {}
    if cmd == "git diff --cached":
        return "git_diff", {"cached": True}
    if cmd == "git add .":
        return "git_add", {"files": ["."]}
    if cmd.startswith("git add "):
        return "git_add", {"files": cmd[len("git add ") :].split()}
    if cmd == "git push":
        return "git_push", {}
    if cmd == "git pull":
        return "git_pull", {}
    commit = _GIT_COMMIT_RE.match(cmd)
    if commit:
        return "git_commit", {"message": commit.group(1)}
    return None
