import asyncio
import sys
import time

from actuator.executor.process import TRUNCATION_MARKER, run_process


def test_successful_command_collects_stdout():
    result = asyncio.run(run_process("echo", ["hello"]))
    assert result.ok is True
    assert result.exit_code == 0
    assert result.stdout.strip() == "hello"
    assert result.error is None


def test_non_zero_exit_reported():
    result = asyncio.run(run_process("sh", ["-c", "echo oops >&2; exit 3"]))
    assert result.ok is False
    assert result.exit_code == 3
    assert "oops" in result.stderr
    assert result.error == "Process exited with code 3"


def test_timeout_keeps_partial_output_and_kills_child():
    started = time.monotonic()
    result = asyncio.run(run_process("sh", ["-c", "echo started; sleep 5"], timeout_ms=300, kill_grace_ms=500))
    elapsed = time.monotonic() - started

    assert result.ok is False
    assert result.timed_out is True
    assert result.exit_code == -1
    assert "started" in result.stdout
    assert result.error == "Command timed out after 300ms"
    assert elapsed < 4


def test_spawn_failure_is_a_result_not_an_exception():
    result = asyncio.run(run_process("definitely-not-a-real-binary-xyz"))
    assert result.ok is False
    assert result.exit_code == -1
    assert result.error.startswith("Failed to spawn process")


def test_output_capped_with_marker():
    result = asyncio.run(
        run_process(sys.executable, ["-c", "print('x' * 5000)"], max_output_bytes=100)
    )
    assert result.ok is True
    assert result.truncated is True
    assert result.stdout.endswith(TRUNCATION_MARKER)
    assert len(result.stdout) == 100 + len(TRUNCATION_MARKER)


def test_stdin_and_env_passed_through():
    result = asyncio.run(run_process("sh", ["-c", "read line; echo \"$line-$GREETING\""], stdin="hi\n", env={"GREETING": "there"}))
    assert result.ok is True
    assert result.stdout.strip() == "hi-there"


def test_timeout_applies_while_child_ignores_stdin():
    started = time.monotonic()
    result = asyncio.run(run_process("sleep", ["4"], stdin="x" * 2_000_000, timeout_ms=500, kill_grace_ms=500))
    elapsed = time.monotonic() - started

    assert result.timed_out is True
    assert result.ok is False
    assert result.error == "Command timed out after 500ms"
    assert elapsed < 3


def test_to_dict_is_camel_case():
    payload = asyncio.run(run_process("true")).to_dict()
    assert payload["exitCode"] == 0
    assert payload["timedOut"] is False
    assert "executionTime" in payload
