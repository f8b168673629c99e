import dataclasses
import os

import pytest

from actuator.security.policy import (
    DEFAULT_ALLOWED_CATEGORIES,
    CommandCategory,
    load_policy,
)
from actuator.security.validator import validate


def test_defaults_without_policy_file(tmp_path):
    policy = load_policy(path=tmp_path / "missing.yaml", env={})
    assert policy.validation_enabled is True
    assert policy.allowed_categories == DEFAULT_ALLOWED_CATEGORIES
    assert policy.allow_dangerous_commands is False
    assert os.path.realpath("/tmp") in policy.cwd_roots


def test_yaml_values_applied(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text(
        "validation_enabled: true\n"
        "allowed_categories: [file_read, network]\n"
        "extra_blocked_patterns: ['forbidden-tool']\n"
        f"cwd_roots: ['{tmp_path}']\n",
        encoding="utf-8",
    )
    policy = load_policy(path=path, env={})
    assert policy.allowed_categories == frozenset({CommandCategory.FILE_READ, CommandCategory.NETWORK})
    assert policy.cwd_roots == (os.path.realpath(str(tmp_path)),)
    assert validate("cat forbidden-tool.log", policy).allowed is False


def test_environment_overrides_yaml(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("allowed_categories: [file_read]\nvalidation_enabled: true\n", encoding="utf-8")
    env = {
        "ALLOWED_COMMAND_CATEGORIES": "network,process",
        "ENABLE_COMMAND_VALIDATION": "false",
        "SHELL_RUN_ALLOW_DANGEROUS": "true",
        "SHELL_RUN_CWD_ROOTS": str(tmp_path),
    }
    policy = load_policy(path=path, env=env)
    assert policy.validation_enabled is False
    assert policy.allowed_categories == frozenset({CommandCategory.NETWORK, CommandCategory.PROCESS_CONTROL})
    assert policy.allow_dangerous_commands is True
    assert policy.cwd_roots == (os.path.realpath(str(tmp_path)),)


def test_invalid_yaml_fails_startup(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("allowed_categories: [file_read\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_policy(path=path, env={})


def test_invalid_blocked_pattern_fails_startup(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("extra_blocked_patterns: ['(unclosed']\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_policy(path=path, env={})


def test_policy_is_immutable(tmp_path):
    policy = load_policy(path=tmp_path / "missing.yaml", env={})
    with pytest.raises(dataclasses.FrozenInstanceError):
        policy.validation_enabled = False
