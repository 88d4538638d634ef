"""Unit tests for task executors

Tests cover:
- run_cli success, non-zero exit, missing binary and timeout
- Transparent internal retry in TaskExecutor.execute
- Claude / Codex / Gemini argument building and output parsing
- Executor registry and pool initialisation
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from baton.agents import (
    build_executor_pool,
    create_executor,
    initialize_pool,
    is_executor_type_registered,
    list_executor_types,
    run_cli,
)
from baton.agents.base import ExecuteOptions, TaskExecutor
from baton.agents.claude import ClaudeExecutor
from baton.agents.codex import CodexExecutor, extract_agent_messages
from baton.agents.gemini import GeminiExecutor
from baton.engine.schema import parse_schema
from baton.errors import TaskExecutionError


def _process(stdout=b"", stderr=b"", returncode=0):
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.returncode = returncode
    proc.kill = MagicMock()
    proc.wait = AsyncMock(return_value=returncode)
    return proc


class TestRunCli:
    """Test the subprocess helper."""

    @pytest.mark.asyncio
    async def test_returns_stripped_stdout(self):
        spawn = AsyncMock(return_value=_process(b"  hello\n"))
        with patch("asyncio.create_subprocess_exec", spawn):
            output = await run_cli("tool", ["-p", "hi"], timeout=5)

        assert output == "hello"
        args, kwargs = spawn.call_args
        assert args == ("tool", "-p", "hi")
        assert kwargs["stdin"] == asyncio.subprocess.DEVNULL

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        spawn = AsyncMock(return_value=_process(b"", b"bad flag\n", returncode=2))
        with patch("asyncio.create_subprocess_exec", spawn):
            with pytest.raises(TaskExecutionError) as exc_info:
                await run_cli("tool", [], timeout=5)

        assert exc_info.value.exit_code == 2
        assert exc_info.value.stderr == "bad flag"
        assert "exited with code 2: bad flag" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        spawn = AsyncMock(side_effect=FileNotFoundError())
        with patch("asyncio.create_subprocess_exec", spawn):
            with pytest.raises(TaskExecutionError, match="CLI not found at 'nope'"):
                await run_cli("nope", [], timeout=5)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self):
        proc = _process()

        async def hang():
            await asyncio.sleep(10)

        proc.communicate = hang
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(TaskExecutionError, match="timed out"):
                await run_cli("tool", [], timeout=0.01)

        proc.kill.assert_called_once()


class _Flaky(TaskExecutor):
    def __init__(self, failures, internal_retries=1):
        super().__init__(node_id="flaky", internal_retries=internal_retries)
        self.failures = list(failures)
        self.attempts = 0

    async def init_session(self):
        self.session_id = "s"

    async def _execute(self, instruction, options=None):
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        return f"done: {instruction}"


class TestInternalRetry:
    """Test TaskExecutor.execute."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self):
        executor = _Flaky([TaskExecutionError("blip")])
        assert await executor.execute("x") == "done: x"
        assert executor.attempts == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_internal_retries(self):
        executor = _Flaky([TaskExecutionError("one"), TaskExecutionError("two")])
        with pytest.raises(TaskExecutionError, match="two"):
            await executor.execute("x")
        assert executor.attempts == 2

    @pytest.mark.asyncio
    async def test_other_exceptions_are_wrapped(self):
        executor = _Flaky([KeyError("k")], internal_retries=0)
        with pytest.raises(TaskExecutionError) as exc_info:
            await executor.execute("x")
        assert isinstance(exc_info.value.__cause__, KeyError)


class TestClaudeExecutor:
    """Test Claude argument building and output handling."""

    @pytest.mark.asyncio
    async def test_session_flags(self):
        executor = ClaudeExecutor(node_id="A", cli_path="claude-bin", timeout=3)
        await executor.init_session()
        sid = executor.session_id

        with patch("baton.agents.claude.run_cli", AsyncMock(return_value="first")) as run:
            assert await executor.execute("one") == "first"
        assert run.call_args.args[0] == "claude-bin"
        assert run.call_args.args[1] == ["--session-id", sid, "-p", "--output-format", "text", "one"]

        with patch("baton.agents.claude.run_cli", AsyncMock(return_value="second")) as run:
            await executor.execute("two")
        assert run.call_args.args[1] == ["-r", sid, "-p", "--output-format", "text", "two"]

    @pytest.mark.asyncio
    async def test_json_schema_structured_output(self):
        executor = ClaudeExecutor(node_id="A")
        response = json.dumps({"result": "text", "structured_output": {"plan": "p"}})

        with patch("baton.agents.claude.run_cli", AsyncMock(return_value=response)) as run:
            output = await executor.execute("x", ExecuteOptions(json_schema='{"type": "object"}'))

        assert json.loads(output) == {"plan": "p"}
        args = run.call_args.args[1]
        assert args[args.index("--output-format") + 1] == "json"
        assert args[args.index("--json-schema") + 1] == '{"type": "object"}'

    @pytest.mark.asyncio
    async def test_json_result_fallback(self):
        executor = ClaudeExecutor(node_id="A")
        with patch("baton.agents.claude.run_cli", AsyncMock(return_value='{"result": "plain"}')):
            output = await executor.execute("x", ExecuteOptions(json_schema="{}"))
        assert output == "plain"

    @pytest.mark.asyncio
    async def test_json_output_not_an_object(self):
        executor = ClaudeExecutor(node_id="A", internal_retries=0)
        with patch("baton.agents.claude.run_cli", AsyncMock(return_value='["a", "b"]')):
            with pytest.raises(TaskExecutionError, match="Claude JSON output is not an object \\(got list\\)"):
                await executor.execute("x", ExecuteOptions(json_schema="{}"))

    @pytest.mark.asyncio
    async def test_failed_call_does_not_start_session(self):
        executor = ClaudeExecutor(node_id="A", internal_retries=0)
        with patch("baton.agents.claude.run_cli", AsyncMock(side_effect=TaskExecutionError("exit 1"))):
            with pytest.raises(TaskExecutionError):
                await executor.execute("x")
        assert executor.session_started is False


class TestCodexExecutor:
    """Test Codex session handling and JSONL parsing."""

    def test_extract_agent_messages(self):
        output = "\n".join([
            json.dumps({"type": "thread.started"}),
            "not json",
            json.dumps({"type": "item.completed", "item": {"type": "reasoning", "text": "hmm"}}),
            json.dumps({"type": "item.completed", "item": {"type": "agent_message", "text": "one"}}),
            json.dumps({"type": "item.completed", "item": {"type": "agent_message", "text": "two"}}),
        ])
        assert extract_agent_messages(output) == "one\n\ntwo"

    def test_no_agent_message(self):
        with pytest.raises(TaskExecutionError, match="No agent_message"):
            extract_agent_messages('{"type": "turn.completed"}')

    @pytest.mark.asyncio
    async def test_init_session_reads_status(self):
        executor = CodexExecutor(node_id="B")
        status = "model: x\nSession ID: 0199a2b3-c4d5-e6f7\n"
        with patch("baton.agents.codex.run_cli", AsyncMock(return_value=status)) as run:
            await executor.init_session()

        assert executor.session_id == "0199a2b3-c4d5-e6f7"
        assert run.call_args.args[1] == ["exec", "--skip-git-repo-check", "/status"]

    @pytest.mark.asyncio
    async def test_init_session_without_id(self):
        executor = CodexExecutor(node_id="B")
        with patch("baton.agents.codex.run_cli", AsyncMock(return_value="nothing here")):
            with pytest.raises(TaskExecutionError, match="session ID"):
                await executor.init_session()

    def test_resume_args(self):
        executor = CodexExecutor(node_id="B")
        executor.session_id = "abc"
        assert executor.build_args("do it") == [
            "exec", "--skip-git-repo-check", "--json", "resume", "abc", "do it",
        ]


class TestGeminiExecutor:
    """Test Gemini session handling."""

    @pytest.mark.asyncio
    async def test_session_from_response(self):
        executor = GeminiExecutor(node_id="C", cli_path="gem")
        replies = [
            json.dumps({"session_id": "g-1", "response": "hi"}),
            json.dumps({"session_id": "g-1", "response": "answer"}),
        ]
        with patch("baton.agents.gemini.run_cli", AsyncMock(side_effect=replies)) as run:
            await executor.init_session()
            output = await executor.execute("question")

        assert executor.session_id == "g-1"
        assert output == "answer"
        assert run.call_args_list[0].args[1] == ["-o=json", "Hello"]
        assert run.call_args_list[1].args[1] == ["-o=json", "-r", "g-1", "question"]

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        executor = GeminiExecutor(node_id="C", internal_retries=0)
        with patch("baton.agents.gemini.run_cli", AsyncMock(return_value="oops")):
            with pytest.raises(TaskExecutionError, match="Failed to parse Gemini JSON output"):
                await executor.execute("question")


class TestRegistry:
    """Test executor registration and pool construction."""

    def test_builtin_types_registered(self):
        assert {"claude", "codex", "gemini"} <= set(list_executor_types())
        assert is_executor_type_registered("claude")
        assert not is_executor_type_registered("gpt")

    def test_create_executor_uses_config(self, config):
        executor = create_executor("codex", "N", config)
        assert isinstance(executor, CodexExecutor)
        assert executor.node_id == "N"
        assert executor.cli_path == config.codex_cli_path
        assert executor.timeout == config.cli_timeout
        assert executor.task_type == "codex"

    def test_create_unknown_type(self, config):
        with pytest.raises(ValueError, match="Unknown task type: gpt"):
            create_executor("gpt", "N", config)

    def test_build_pool_one_executor_per_node(self, schema_factory, node, edge, config):
        schema = parse_schema(
            schema_factory(
                [node("A"), node("B", task_type="gemini")], [edge("A", "B")], "A", "B"
            )
        )
        pool = build_executor_pool(schema, config)

        assert list(pool) == ["A", "B"]
        assert isinstance(pool["A"], ClaudeExecutor)
        assert isinstance(pool["B"], GeminiExecutor)

    @pytest.mark.asyncio
    async def test_initialize_pool(self, scripted_executor):
        pool = {"A": scripted_executor(node_id="A"), "B": scripted_executor(node_id="B")}
        await initialize_pool(pool)
        assert all(executor.initialized for executor in pool.values())

    @pytest.mark.asyncio
    async def test_initialize_pool_failure_aborts(self, scripted_executor):
        broken = scripted_executor(node_id="B")
        broken.init_session = AsyncMock(side_effect=TaskExecutionError("codex missing"))
        pool = {"A": scripted_executor(node_id="A"), "B": broken}

        with pytest.raises(TaskExecutionError, match="B: codex missing"):
            await initialize_pool(pool)
