"""Unit tests for the replay sandbox."""

import json

import pytest

from shadowlab.memory.episode import Trace, TraceStatus
from shadowlab.replay.errors import ReplayExhausted, ReplayToolFailed
from shadowlab.replay.sandbox import (
    DriftType,
    ReplaySandbox,
    ToolResult,
    canonical_args,
    map_shell_git_command,
    normalize_path,
    normalize_tool_output,
)


def make_trace(step, tool, args, output="ok", status=TraceStatus.SUCCESS, duration=5):
    return Trace(
        episode_id="ep",
        step_index=step,
        tool_name=tool,
        tool_args=json.dumps(args),
        tool_output=output,
        duration=duration,
        status=status,
    )


def git_status(result: ToolResult) -> dict:
    return json.loads(result.text)


class TestCanonicalArgs:
    def test_key_order_does_not_matter(self):
        a = {"b": 1, "a": {"y": [1, 2], "x": None}}
        b = {"a": {"x": None, "y": [1, 2]}, "b": 1}
        assert canonical_args(a) == canonical_args(b)

    def test_list_order_is_preserved(self):
        assert canonical_args({"files": ["a", "b"]}) != canonical_args({"files": ["b", "a"]})

    def test_scalars(self):
        assert canonical_args(None) == "null"
        assert canonical_args(True) == "true"
        assert canonical_args("x") == '"x"'
        assert canonical_args({"n": [1, {"k": "v"}]}) == '{"n":[1,{"k":"v"}]}'


class TestNormalizePath:
    def test_relative_paths_resolve_under_workspace(self):
        assert normalize_path("notes/todo.txt") == "/workspace/notes/todo.txt"
        assert normalize_path("./a/../b.txt") == "/workspace/b.txt"
        assert normalize_path("") == "/workspace"
        assert normalize_path(".") == "/workspace"

    def test_windows_drive_becomes_top_segment(self):
        assert normalize_path("C:\\work\\a.txt") == "/c/work/a.txt"
        assert normalize_path("D:") == "/d"

    def test_absolute_paths(self):
        assert normalize_path("/work//a.txt") == "/work/a.txt"
        assert normalize_path("//srv/x") == "/srv/x"


class TestTraceReplay:
    @pytest.mark.asyncio
    async def test_plain_text_output_is_wrapped(self):
        sandbox = ReplaySandbox([make_trace(0, "web_search", {"q": "x"}, "plain output text")])

        result = await sandbox.call_tool("web_search", {"q": "x"})

        assert result.text == "plain output text"
        assert result.is_error is False
        assert sandbox.drift_detected is False

    @pytest.mark.asyncio
    async def test_structured_output_is_returned_as_is(self):
        stored = json.dumps({"content": [{"type": "text", "text": "hi"}], "isError": False})
        sandbox = ReplaySandbox([make_trace(0, "web_search", {}, stored)])

        result = await sandbox.call_tool("web_search", {})

        assert result.content[0].text == "hi"

    @pytest.mark.asyncio
    async def test_historical_failure_fails_again(self):
        sandbox = ReplaySandbox(
            [make_trace(0, "shell_execute", {"command": "bad-command"}, "permission denied", TraceStatus.FAILED)]
        )

        with pytest.raises(ReplayToolFailed, match="permission denied"):
            await sandbox.call_tool("shell_execute", {"command": "bad-command"})

    @pytest.mark.asyncio
    async def test_unmatched_call_raises_exhausted(self):
        sandbox = ReplaySandbox([])

        with pytest.raises(ReplayExhausted):
            await sandbox.call_tool("web_search", {"q": "x"})

    @pytest.mark.asyncio
    async def test_exact_match_ignores_key_order(self):
        sandbox = ReplaySandbox([make_trace(0, "api_call", {"a": 1, "b": 2}, "done")])

        result = await sandbox.call_tool("api_call", {"b": 2, "a": 1})

        assert result.text == "done"
        assert sandbox.drifts == []

    @pytest.mark.asyncio
    async def test_same_tool_fallback_records_args_drift(self):
        sandbox = ReplaySandbox([make_trace(0, "api_call", {"a": 1}, "done")])

        result = await sandbox.call_tool("api_call", {"a": 2})

        assert result.text == "done"
        assert [d.type for d in sandbox.drifts] == [DriftType.ARGS]

    @pytest.mark.asyncio
    async def test_skipping_ahead_records_tool_drift(self):
        sandbox = ReplaySandbox(
            [
                make_trace(0, "lookup", {"id": 1}, "first"),
                make_trace(1, "api_call", {"a": 1}, "second"),
            ]
        )

        result = await sandbox.call_tool("api_call", {"a": 1})

        assert result.text == "second"
        assert len(sandbox.drifts) == 1
        drift = sandbox.drifts[0]
        assert drift.type == DriftType.TOOL
        assert drift.expected == "lookup"
        assert drift.actual == "api_call"

    @pytest.mark.asyncio
    async def test_sequential_fallback_consumes_cursor_trace(self):
        sandbox = ReplaySandbox([make_trace(0, "lookup", {"id": 1}, "recorded")])

        result = await sandbox.call_tool("other_tool", {"id": 1})

        assert result.text == "recorded"
        assert [d.type for d in sandbox.drifts] == [DriftType.TOOL]

        with pytest.raises(ReplayExhausted):
            await sandbox.call_tool("other_tool", {"id": 1})

    @pytest.mark.asyncio
    async def test_matching_sequence_has_no_drift(self):
        traces = [
            make_trace(0, "lookup", {"id": 1}, "a"),
            make_trace(1, "lookup", {"id": 2}, "b"),
        ]
        sandbox = ReplaySandbox(traces)

        assert (await sandbox.call_tool("lookup", {"id": 1})).text == "a"
        assert (await sandbox.call_tool("lookup", {"id": 2})).text == "b"
        assert sandbox.drift_detected is False


class TestVirtualFilesystem:
    @pytest.mark.asyncio
    async def test_write_then_read_without_traces(self):
        sandbox = ReplaySandbox([])

        write = await sandbox.call_tool("fs_write_file", {"path": "notes/todo.txt", "content": "hello replay"})
        assert "Successfully wrote" in write.text

        read = await sandbox.call_tool("fs_read_file", {"path": "notes/todo.txt"})
        assert read.text == "hello replay"
        assert read.is_error is False

    @pytest.mark.asyncio
    async def test_windows_and_posix_paths_are_equivalent(self):
        sandbox = ReplaySandbox([])

        await sandbox.call_tool("fs_write_file", {"path": "C:\\work\\a.txt", "content": "x"})
        read = await sandbox.call_tool("fs_read_file", {"path": "/c/work/a.txt"})

        assert read.text == "x"

    @pytest.mark.asyncio
    async def test_reading_unknown_file_is_an_error_result(self):
        sandbox = ReplaySandbox([])

        result = await sandbox.call_tool("fs_read_file", {"path": "missing.txt"})

        assert result.is_error is True
        assert "ENOENT" in result.text

    @pytest.mark.asyncio
    async def test_missing_path_is_an_error_result(self):
        sandbox = ReplaySandbox([])

        result = await sandbox.call_tool("fs_write_file", {"content": "x"})

        assert result.is_error is True

    @pytest.mark.asyncio
    async def test_list_directory_classifies_dirs(self):
        sandbox = ReplaySandbox([])
        await sandbox.call_tool("fs_write_file", {"path": "src/a.py", "content": "a"})
        await sandbox.call_tool("fs_write_file", {"path": "src/b.py", "content": "b"})
        await sandbox.call_tool("fs_write_file", {"path": "src/nested/c.py", "content": "c"})

        listing = await sandbox.call_tool("fs_list_directory", {"path": "src"})

        assert listing.text.splitlines() == ["[FILE] a.py", "[FILE] b.py", "[DIR] nested"]

    @pytest.mark.asyncio
    async def test_workspace_is_seeded_from_successful_traces(self):
        traces = [
            make_trace(0, "fs_read_file", {"path": "README.md"}, "# Project"),
            make_trace(1, "fs_write_file", {"path": "out.txt", "content": "result"}, "Successfully wrote"),
            make_trace(2, "fs_read_file", {"path": "broken.txt"}, "boom", TraceStatus.FAILED),
        ]
        sandbox = ReplaySandbox(traces)

        assert sandbox.workspace.files == {
            "/workspace/README.md": "# Project",
            "/workspace/out.txt": "result",
        }
        status = git_status(await sandbox.call_tool("git_status", {}))
        assert status["created"] == []
        assert status["modified"] == []

    @pytest.mark.asyncio
    async def test_fs_alignment_is_advisory(self):
        sandbox = ReplaySandbox([make_trace(0, "web_search", {"q": "x"}, "found")])

        await sandbox.call_tool("fs_read_file", {"path": "nothing.txt"})

        assert sandbox.drifts == []
        assert (await sandbox.call_tool("web_search", {"q": "x"})).text == "found"


class TestShell:
    @pytest.mark.asyncio
    async def test_pwd_and_echo(self):
        sandbox = ReplaySandbox([])

        assert (await sandbox.call_tool("shell_execute", {"command": "pwd"})).text == "/workspace"
        assert (await sandbox.call_tool("shell_execute", {"command": "echo hi there"})).text == "hi there"

    @pytest.mark.asyncio
    async def test_ls_and_cat_use_virtual_world(self):
        sandbox = ReplaySandbox([])
        await sandbox.call_tool("fs_write_file", {"path": "docs/a.md", "content": "A"})

        listing = await sandbox.call_tool("shell_execute", {"command": "ls -la docs"})
        assert listing.text == "[FILE] a.md"

        dir_listing = await sandbox.call_tool("shell_execute", {"command": "dir"})
        assert dir_listing.text == "[DIR] docs"

        content = await sandbox.call_tool("shell_execute", {"command": "type docs/a.md"})
        assert content.text == "A"

        missing = await sandbox.call_tool("shell_execute", {"command": "cat nope.md"})
        assert missing.is_error is True

    @pytest.mark.asyncio
    async def test_empty_command_is_an_error_result(self):
        sandbox = ReplaySandbox([])

        result = await sandbox.call_tool("shell_execute", {"command": "   "})

        assert result.is_error is True

    @pytest.mark.asyncio
    async def test_unknown_command_falls_through_to_replay(self):
        sandbox = ReplaySandbox([make_trace(0, "shell_execute", {"command": "make build"}, "built")])

        result = await sandbox.call_tool("shell_execute", {"command": "make build"})

        assert result.text == "built"

    @pytest.mark.asyncio
    async def test_git_commands_map_onto_git_tools(self):
        sandbox = ReplaySandbox([])
        await sandbox.call_tool("fs_write_file", {"path": "app.py", "content": "v1"})

        await sandbox.call_tool("shell_execute", {"command": "git add ."})
        commit = await sandbox.call_tool("shell_execute", {"command": "git commit -m \"feat: app\""})
        assert commit.text.startswith("Committed: replay-1")

        log = json.loads((await sandbox.call_tool("shell_execute", {"command": "git log -n 1"})).text)
        assert [entry["message"] for entry in log] == ["feat: app"]

    def test_shell_git_mapping(self):
        assert map_shell_git_command("git diff --cached") == ("git_diff", {"cached": True})
        assert map_shell_git_command("git add a.py b.py") == ("git_add", {"files": ["a.py", "b.py"]})
        assert map_shell_git_command("git commit -m 'fix'") == ("git_commit", {"message": "fix"})
        assert map_shell_git_command("git log -n 3") == ("git_log", {"maxCount": 3})
        assert map_shell_git_command("git rebase main") is None


class TestGitSimulation:
    @pytest.mark.asyncio
    async def test_add_commit_status_flow(self):
        sandbox = ReplaySandbox([])
        await sandbox.call_tool("fs_write_file", {"path": "src/main.py", "content": "print('v1')"})

        await sandbox.call_tool("git_add", {"files": ["src/main.py"]})
        staged = git_status(await sandbox.call_tool("git_status", {}))
        assert staged["staged"] == ["/workspace/src/main.py"]
        assert staged["created"] == []
        assert staged["modified"] == []

        commit = await sandbox.call_tool("git_commit", {"message": "feat: add main"})
        assert "Committed:" in commit.text

        clean = git_status(await sandbox.call_tool("git_status", {}))
        assert clean["staged"] == []
        assert clean["modified"] == []
        assert clean["created"] == []
        assert clean["deleted"] == []

    @pytest.mark.asyncio
    async def test_unstaged_modification_is_reported(self):
        sandbox = ReplaySandbox([])
        await sandbox.call_tool("fs_write_file", {"path": "src/main.py", "content": "v1"})
        await sandbox.call_tool("git_add", {"files": ["src"]})
        await sandbox.call_tool("git_commit", {"message": "feat: add main"})
        await sandbox.call_tool("fs_write_file", {"path": "src/main.py", "content": "v2"})

        status = git_status(await sandbox.call_tool("git_status", {}))

        assert status["modified"] == ["/workspace/src/main.py"]
        assert status["created"] == []

    @pytest.mark.asyncio
    async def test_commit_requires_staged_changes_and_message(self):
        sandbox = ReplaySandbox([])

        empty = await sandbox.call_tool("git_commit", {"message": "nothing"})
        assert empty.is_error is True

        await sandbox.call_tool("fs_write_file", {"path": "a.txt", "content": "a"})
        await sandbox.call_tool("git_add", {"files": ["."]})
        no_message = await sandbox.call_tool("git_commit", {})
        assert no_message.is_error is True

    @pytest.mark.asyncio
    async def test_git_add_requires_a_list(self):
        sandbox = ReplaySandbox([])

        result = await sandbox.call_tool("git_add", {"files": "a.txt"})

        assert result.is_error is True

    @pytest.mark.asyncio
    async def test_diff_reports_paths_only(self):
        sandbox = ReplaySandbox([])
        await sandbox.call_tool("fs_write_file", {"path": "a.txt", "content": "a"})
        await sandbox.call_tool("fs_write_file", {"path": "b.txt", "content": "b"})
        await sandbox.call_tool("git_add", {"files": ["a.txt"]})

        unstaged = await sandbox.call_tool("git_diff", {})
        cached = await sandbox.call_tool("git_diff", {"cached": True})

        assert unstaged.text == "diff -- replay//workspace/b.txt"
        assert cached.text == "diff -- replay//workspace/a.txt"

    @pytest.mark.asyncio
    async def test_log_is_newest_first(self):
        sandbox = ReplaySandbox([])
        for i in range(2):
            await sandbox.call_tool("fs_write_file", {"path": f"f{i}.txt", "content": str(i)})
            await sandbox.call_tool("git_add", {"files": ["."]})
            await sandbox.call_tool("git_commit", {"message": f"commit {i}"})

        log = json.loads((await sandbox.call_tool("git_log", {})).text)

        assert [entry["message"] for entry in log] == ["commit 1", "commit 0", "Initial replay snapshot"]
        assert log[0]["hash"] == "replay-2"


class TestMetrics:
    @pytest.mark.asyncio
    async def test_invocation_risk_and_human_counters(self):
        traces = [
            make_trace(0, "shell_execute", {"command": "make test"}, "ok"),
            make_trace(1, "ask_user", {"prompt": "continue?"}, "yes"),
        ]
        sandbox = ReplaySandbox(traces)

        await sandbox.call_tool("shell_execute", {"command": "make test"})
        await sandbox.call_tool("ask_user", {"prompt": "continue?"})
        await sandbox.call_tool("git_push", {})

        assert sandbox.invocation_count == 3
        assert sandbox.risk_event_count == 2
        assert sandbox.human_interrupt_count == 1


class TestNormalizeToolOutput:
    def test_json_string_becomes_text(self):
        assert normalize_tool_output('"quoted"').text == "quoted"

    def test_other_json_is_reserialized(self):
        assert normalize_tool_output('{"rows": 3}').text == '{"rows": 3}'

    def test_unparseable_output_is_kept(self):
        assert normalize_tool_output("not json {").text == "not json {"
