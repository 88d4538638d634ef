"""Unit tests for the command-line entry point."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from baton.__main__ import main, parse_args, parse_metadata
from baton.engine.state import ExecutionResult
from baton.errors import SchemaValidationError


@pytest.fixture
def schema_file(tmp_path, fan_out_schema):
    path = tmp_path / "schema.json"
    path.write_text(json.dumps(fan_out_schema))
    return path


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("baton.__main__.setup_logging"):
        yield


class TestParseArgs:
    """Test argument parsing."""

    def test_prompt_words_and_flags(self):
        args = parse_args(["schema.json", "explain", "recursion", "-v", "-m", "k=1"])
        assert args.schema == "schema.json"
        assert args.prompt == ["explain", "recursion"]
        assert args.verbose is True
        assert args.metadata == ["k=1"]

    def test_parse_metadata(self):
        assert parse_metadata(["n=3", "flag=true", "name=bob", "obj={\"a\": 1}"]) == {
            "n": 3,
            "flag": True,
            "name": "bob",
            "obj": {"a": 1},
        }

    def test_parse_metadata_invalid(self):
        with pytest.raises(ValueError, match="KEY=VALUE"):
            parse_metadata(["novalue"])


class TestMain:
    """Test main()."""

    def test_success(self, schema_file, tmp_path, capsys):
        result = ExecutionResult(final_answer="All done", run_id="r")
        orchestrate = AsyncMock(return_value=result)

        with patch("baton.__main__.orchestrate", orchestrate):
            code = main([str(schema_file), "hello", "world", "-c", str(tmp_path / "none.yaml"), "-m", "x=1"])

        assert code == 0
        assert "All done" in capsys.readouterr().out
        schema, prompt, config, metadata = orchestrate.call_args.args
        assert schema["startNodeId"] == "A"
        assert prompt == "hello world"
        assert metadata == {"x": 1}
        assert orchestrate.call_args.kwargs["save"] is True

    def test_error_result_exits_non_zero(self, schema_file, tmp_path, capsys):
        result = ExecutionResult(final_answer="Error during execution: boom", error="boom")

        with patch("baton.__main__.orchestrate", AsyncMock(return_value=result)):
            code = main([str(schema_file), "-c", str(tmp_path / "none.yaml")])

        assert code == 1
        assert "Execution error: boom" in capsys.readouterr().err

    def test_prompt_from_file(self, schema_file, tmp_path):
        prompt_file = tmp_path / "prompt.txt"
        prompt_file.write_text("  from file\n")
        orchestrate = AsyncMock(return_value=ExecutionResult(final_answer="ok"))

        with patch("baton.__main__.orchestrate", orchestrate):
            code = main([str(schema_file), "-f", str(prompt_file), "-c", str(tmp_path / "none.yaml")])

        assert code == 0
        assert orchestrate.call_args.args[1] == "from file"

    def test_file_and_prompt_conflict(self, schema_file, capsys):
        code = main([str(schema_file), "text", "-f", "prompt.txt"])
        assert code == 1
        assert "Cannot use both" in capsys.readouterr().err

    def test_missing_schema_file(self, tmp_path, capsys):
        code = main([str(tmp_path / "absent.json"), "-c", str(tmp_path / "none.yaml")])
        assert code == 1
        assert "Error:" in capsys.readouterr().err

    def test_malformed_schema_file(self, tmp_path, capsys):
        path = tmp_path / "schema.json"
        path.write_text("{not json")
        orchestrate = AsyncMock()

        with patch("baton.__main__.orchestrate", orchestrate):
            code = main([str(path), "-c", str(tmp_path / "none.yaml")])

        assert code == 1
        assert "Error:" in capsys.readouterr().err
        orchestrate.assert_not_called()

    def test_orchestration_failure(self, schema_file, tmp_path, capsys):
        orchestrate = AsyncMock(side_effect=SchemaValidationError([]))

        with patch("baton.__main__.orchestrate", orchestrate):
            code = main([str(schema_file), "-c", str(tmp_path / "none.yaml")])

        assert code == 1
        assert "Orchestration failed" in capsys.readouterr().err


class TestOrchestrate:
    """Test orchestrate() end to end with scripted executors."""

    @pytest.mark.asyncio
    async def test_saves_state_and_runs(self, fan_out_schema, scripted_executor, config):
        from baton.__main__ import orchestrate
        from baton.runs import load_run_state

        pool = {node_id: scripted_executor([f"{node_id}!"], node_id=node_id) for node_id in "ABCD"}

        with patch("baton.engine.executor.build_executor_pool", return_value=pool):
            result = await orchestrate(fan_out_schema, "prompt", config, {"k": 1})

        assert result.final_answer == "D!"
        assert result.metadata == {"k": 1}
        state = load_run_state(result.run_id, config.runs_dir)
        assert state["prompt"] == "prompt"
        assert {a["sessionId"] for a in state["agents"]} == {f"session-{n}" for n in "ABCD"}
