import asyncio
import os

from actuator.executor.shell import run_shell, validation_text
from actuator.security.policy import CommandCategory, CommandPolicy


def _policy(tmp_path, **overrides):
    return CommandPolicy(cwd_roots=(os.path.realpath(str(tmp_path)),), **overrides)


def test_allowed_read_command_runs(tmp_path):
    (tmp_path / "notes.txt").write_text("alpha\n", encoding="utf-8")
    result = asyncio.run(run_shell({"cmd": "cat", "argv": ["notes.txt"], "cwd": str(tmp_path)}, _policy(tmp_path)))
    assert result["ok"] is True
    assert result["stdout"] == "alpha\n"
    assert result["outputPreview"] == "alpha\n"
    assert result["dryRun"] is False
    assert result["classification"]["category"] == "file_read"


def test_policy_rejection_carries_classification(tmp_path):
    result = asyncio.run(run_shell({"cmd": "mkdir", "argv": ["out"], "cwd": str(tmp_path)}, _policy(tmp_path)))
    assert result["ok"] is False
    assert result["errorKind"] == "policy_rejection"
    assert result["classification"]["category"] == "file_write"
    assert not (tmp_path / "out").exists()


def test_dry_run_previews_without_side_effects(tmp_path):
    policy = _policy(tmp_path, allowed_categories=frozenset({CommandCategory.FILE_WRITE}))
    result = asyncio.run(run_shell({"cmd": "touch", "argv": ["made.txt"], "cwd": str(tmp_path), "dryRun": True}, policy))
    assert result["ok"] is True
    assert result["dryRun"] is True
    assert result["preview"].startswith("Would run: touch made.txt")
    assert not (tmp_path / "made.txt").exists()


def test_confirmation_required_then_granted(tmp_path):
    policy = _policy(tmp_path, allowed_categories=frozenset({CommandCategory.FILE_WRITE}))
    args = {"cmd": "touch", "argv": ["made.txt"], "cwd": str(tmp_path)}

    pending = asyncio.run(run_shell(args, policy))
    assert pending["ok"] is False
    assert pending["needsConfirmation"] is True
    assert not (tmp_path / "made.txt").exists()

    done = asyncio.run(run_shell({**args, "confirmed": True}, policy))
    assert done["ok"] is True
    assert (tmp_path / "made.txt").exists()


def test_cwd_outside_roots_is_security_boundary(tmp_path):
    result = asyncio.run(run_shell({"cmd": "ls", "cwd": "/"}, _policy(tmp_path)))
    assert result["ok"] is False
    assert result["errorKind"] == "security_boundary"


def test_gate_rejections_never_spawn(tmp_path):
    policy = _policy(tmp_path)
    assert asyncio.run(run_shell({"cmd": "nc", "argv": ["-l", "80"]}, policy))["errorKind"] == "policy_rejection"
    assert asyncio.run(run_shell({"cmd": "echo", "argv": ["$(id)"]}, policy))["errorKind"] == "policy_rejection"
    assert asyncio.run(run_shell({"cmd": "ls", "timeoutMs": 10}, policy))["errorKind"] == "invalid_request"
    assert asyncio.run(run_shell({"cmd": "ls", "env": "A=1"}, policy))["errorKind"] == "invalid_request"


def test_timeout_reports_timeout_kind(tmp_path):
    policy = _policy(tmp_path, validation_enabled=False)
    result = asyncio.run(run_shell({"cmd": "sleep", "argv": ["5"], "timeoutMs": 1000}, policy))
    assert result["ok"] is False
    assert result["timedOut"] is True
    assert result["errorKind"] == "timeout"


def test_validation_text_uses_script_body():
    policy = CommandPolicy()
    assert validation_text("bash", ["-c", "ls -la"], policy) == "ls -la"
    assert validation_text("/bin/sh", ["script.sh"], policy) == "script.sh"
    assert validation_text("ls", ["-la"], policy) == "ls -la"
