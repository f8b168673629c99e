"""
Command policy: pattern tables, category risk mapping and shell gates.

The policy is read once at startup (YAML + environment overrides) into an
immutable ``CommandPolicy`` and handed to the validator and the shell skill
explicitly. Nothing here is mutated after ``load_policy`` returns.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Pattern, Tuple

import yaml

logger = logging.getLogger(__name__)

POLICY_PATH = Path(__file__).resolve().parent / "command_policy.yaml"


class CommandCategory(str, Enum):
    OPEN_APP = "open_app"
    SYSTEM_INFO = "system_info"
    FILE_READ = "file_read"
    FILE_WRITE = "file_write"
    NETWORK = "network"
    PROCESS_CONTROL = "process_control"
    UNRESTRICTED = "unrestricted"


class RiskLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


_CATEGORY_ALIASES = {
    "process": CommandCategory.PROCESS_CONTROL,
    "process-control": CommandCategory.PROCESS_CONTROL,
    "app-launch": CommandCategory.OPEN_APP,
    "system-info": CommandCategory.SYSTEM_INFO,
    "file-read": CommandCategory.FILE_READ,
    "file-write": CommandCategory.FILE_WRITE,
}

# Destructive filesystem ops, fork bombs, raw-disk writes, broad chmod,
# download-and-execute pipelines, chained deletes.
DEFAULT_BLOCKED_PATTERNS: Tuple[str, ...] = (
    r"rm\s+-rf\s+[\/~]",
    r":\(\)\{\s*:\|:&\s*\};:",
    r"mkfs",
    r"dd\s+if=",
    r">\/dev\/sd[a-z]",
    r"chmod\s+777",
    r"wget.*\|\s*sh",
    r"curl.*\|\s*sh",
    r"eval\s*\(",
    r";\s*rm\s+-rf",
    r"&&\s*rm\s+-rf",
    r"\|\s*rm\s+-rf",
)

DEFAULT_PRIVILEGE_PATTERNS: Tuple[str, ...] = (r"^sudo\s+",)

# Table order matters: the first category with a matching pattern wins.
DEFAULT_CATEGORY_PATTERNS: Tuple[Tuple[CommandCategory, Tuple[str, ...]], ...] = (
    (
        CommandCategory.OPEN_APP,
        (
            r"""^open\s+-a\s+["']?[\w\s]+["']?$""",
            r"""^open\s+["']?[\w\s\/\.]+["']?$""",
            r"^xdg-open\s+",
            r"^start\s+",
        ),
    ),
    (
        CommandCategory.SYSTEM_INFO,
        (
            r"^(top|htop|ps|uptime|w|who|whoami)(\s|$)",
            r"^(df|du|free|vm_stat)(\s|$)",
            r"^(uname|hostname|sw_vers)(\s|$)",
            r"^(ifconfig|ip\s+addr|netstat)(\s|$)",
            r"^(date|cal|uptime)(\s|$)",
            r"^system_profiler",
            r"\s+(--version|-v|-V|version)(\s|$)",
            r"^[\w\-]+\s+--version$",
            r"^[\w\-]+\s+-v$",
            r"^[\w\-]+\s+-V$",
        ),
    ),
    (
        CommandCategory.FILE_READ,
        (
            r"^(ls|ll|la|dir)(\s|$)",
            r"^cat\s+",
            r"^head\s+",
            r"^tail\s+",
            r"^less\s+",
            r"^more\s+",
            r"^find\s+",
            r"^grep\s+",
            r"^(locate|mdfind|spotlight)\s+",
            r"^(pwd|cd)(\s|$)",
            r"^test\s+-[defLrwxs]",
            r"^\[\s+-[defLrwxs]",
            r"^(test|stat)\s+",
            r"^(file|wc|sort|uniq|basename|dirname)\s+",
            r"^(awk|sed)\s+",
            r"^(tree|which|whereis|type)\s+",
            r"^(echo|printf)\s+",
            r"^(test|\[).*(&&|\|\|)\s*echo",
            r"^(find|ls|cat|grep|locate|mdfind|echo).*\|.*(grep|sort|uniq|wc|head|tail|awk|sed|less|more)",
            r"^find\s+.*-(name|iname|type|path|ipath|regex|iregex|size|mtime|atime|ctime)",
        ),
    ),
    (
        CommandCategory.FILE_WRITE,
        (
            r"^(touch|mkdir|cp|mv)(\s|$)",
            r"^echo\s+.*>\s*",
            r"^tee\s+",
        ),
    ),
    (
        CommandCategory.NETWORK,
        (
            r"^(ping|curl|wget|nc|telnet)(\s|$)",
            r"^(ssh|scp|rsync)(\s|$)",
        ),
    ),
    (
        CommandCategory.PROCESS_CONTROL,
        (
            r"^(kill|killall|pkill)(\s|$)",
            r"^(systemctl|service)(\s|$)",
            r"""^osascript\s+-e\s+['"]quit\s+app""",
            r"^docker\s+(ps|images|container\s+ls|image\s+ls|version|info)(\s|$)",
            r"^docker-compose\s+(ps|config|version)(\s|$)",
        ),
    ),
)

DEFAULT_RISK_BY_CATEGORY: Dict[CommandCategory, RiskLevel] = {
    CommandCategory.OPEN_APP: RiskLevel.LOW,
    CommandCategory.SYSTEM_INFO: RiskLevel.LOW,
    CommandCategory.FILE_READ: RiskLevel.LOW,
    CommandCategory.FILE_WRITE: RiskLevel.MEDIUM,
    CommandCategory.NETWORK: RiskLevel.MEDIUM,
    CommandCategory.PROCESS_CONTROL: RiskLevel.HIGH,
}

DEFAULT_CONFIRMATION_CATEGORIES: FrozenSet[CommandCategory] = frozenset(
    {CommandCategory.FILE_WRITE, CommandCategory.NETWORK, CommandCategory.PROCESS_CONTROL}
)

DEFAULT_ALLOWED_CATEGORIES: FrozenSet[CommandCategory] = frozenset(
    {CommandCategory.OPEN_APP, CommandCategory.SYSTEM_INFO, CommandCategory.FILE_READ}
)

# shell.run: utilities that may be spawned directly.
ALLOWED_COMMANDS: FrozenSet[str] = frozenset(
    {
        # shells (script bodies are scanned separately)
        "bash", "sh", "zsh",
        # version control
        "git", "svn", "hg",
        # language runtimes and package managers
        "node", "npm", "npx", "yarn", "pnpm", "bun",
        "python", "python3", "pip", "pip3", "pipenv", "poetry", "uv",
        "ruby", "gem", "bundle", "go", "cargo", "rustc",
        # filesystem
        "ls", "pwd", "mkdir", "rmdir", "rm", "cp", "mv",
        "find", "locate", "which", "whereis",
        "ln", "readlink", "touch", "stat", "file", "basename", "dirname",
        # text processing
        "cat", "head", "tail", "grep", "egrep", "fgrep", "rg",
        "sed", "awk", "sort", "uniq", "wc", "cut", "tr", "fold", "fmt",
        "tee", "echo", "printf", "strings", "hexdump", "od", "jq", "yq",
        # permissions
        "chmod", "chown", "chgrp", "getfacl", "setfacl",
        # processes
        "ps", "pgrep", "kill", "killall", "pkill",
        # system info
        "uname", "whoami", "id", "who", "w", "uptime", "date", "cal",
        "df", "du", "free", "lscpu", "lsblk", "lsusb", "lspci",
        "hostname", "sw_vers", "system_profiler",
        # network
        "ping", "wget", "curl", "ssh", "scp", "rsync",
        "netstat", "ss", "ifconfig", "ip", "arp", "route",
        "dig", "nslookup", "host", "networksetup", "airport",
        # archives
        "tar", "gzip", "gunzip", "bzip2", "bunzip2", "xz",
        "zip", "unzip", "rar", "unrar", "7z",
        # diffing
        "diff", "cmp", "comm", "patch",
        # misc utilities
        "xargs", "seq", "sleep", "timeout", "watch", "time", "true", "false",
        "type", "man", "base64", "md5", "md5sum", "shasum", "sha256sum", "ldd",
        "env", "printenv",
        # build and test tooling
        "make", "cmake", "ninja", "jest", "mocha", "vitest", "pytest",
        "eslint", "prettier", "tsc", "esbuild", "vite", "webpack", "rollup",
        # containers and infra
        "docker", "docker-compose", "kubectl", "helm", "k9s",
        "terraform", "ansible", "vagrant",
        # databases
        "psql", "mysql", "sqlite3", "mongosh", "redis-cli",
        # editors
        "code", "cursor", "subl",
        # desktop integration
        "open", "xdg-open", "osascript", "pbcopy", "pbpaste", "say", "defaults",
        "mdfind", "screencapture", "caffeinate", "pmset", "diskutil", "hdiutil",
        "launchctl", "xattr", "plutil", "security", "brew",
        # media
        "ffmpeg", "ffprobe", "convert", "identify", "exiftool",
    }
)

# Disk/power management tools: need SHELL_RUN_ALLOW_DANGEROUS=true.
DANGEROUS_COMMANDS: FrozenSet[str] = frozenset({"diskutil", "hdiutil", "pmset"})

SHELL_INTERPRETERS: FrozenSet[str] = frozenset({"bash", "sh", "zsh"})

# Raw argv of non-shell commands must not carry substitutions.
BLOCKED_ARG_PATTERNS: Tuple[str, ...] = (r"\$\(", r"`[^`]+`")

# Scanned against script bodies handed to a shell interpreter.
DANGEROUS_SCRIPT_PATTERNS: Tuple[str, ...] = (
    r"\bsudo\b",
    r"\bsu\b\s",
    r"\bpasswd\b",
    r"rm\s+-rf\s+\/(?!Users|home|tmp|var\/tmp)",
    r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:",
    r">\/dev\/sd[a-z]",
    r"dd\s+.*of=\/dev\/(?!null|zero)",
)


def _compile(patterns: Iterable[str]) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


def _default_cwd_roots() -> Tuple[str, ...]:
    roots: List[str] = []
    for candidate in (str(Path.home()), "/tmp", "/var/tmp", tempfile.gettempdir()):
        resolved = os.path.realpath(candidate)
        if resolved not in roots:
            roots.append(resolved)
    return tuple(roots)


@dataclass(frozen=True)
class CommandPolicy:
    """Immutable, process-wide command policy."""

    validation_enabled: bool = True
    allowed_categories: FrozenSet[CommandCategory] = DEFAULT_ALLOWED_CATEGORIES
    blocked_patterns: Tuple[Pattern[str], ...] = field(default_factory=lambda: _compile(DEFAULT_BLOCKED_PATTERNS))
    privilege_patterns: Tuple[Pattern[str], ...] = field(
        default_factory=lambda: _compile(DEFAULT_PRIVILEGE_PATTERNS)
    )
    category_patterns: Tuple[Tuple[CommandCategory, Tuple[Pattern[str], ...]], ...] = field(
        default_factory=lambda: tuple((cat, _compile(pats)) for cat, pats in DEFAULT_CATEGORY_PATTERNS)
    )
    risk_by_category: Mapping[CommandCategory, RiskLevel] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_RISK_BY_CATEGORY))
    )
    confirmation_categories: FrozenSet[CommandCategory] = DEFAULT_CONFIRMATION_CATEGORIES
    allowed_commands: FrozenSet[str] = ALLOWED_COMMANDS
    dangerous_commands: FrozenSet[str] = DANGEROUS_COMMANDS
    allow_dangerous_commands: bool = False
    shell_interpreters: FrozenSet[str] = SHELL_INTERPRETERS
    blocked_arg_patterns: Tuple[Pattern[str], ...] = field(default_factory=lambda: _compile(BLOCKED_ARG_PATTERNS))
    dangerous_script_patterns: Tuple[Pattern[str], ...] = field(
        default_factory=lambda: _compile(DANGEROUS_SCRIPT_PATTERNS)
    )
    cwd_roots: Tuple[str, ...] = field(default_factory=_default_cwd_roots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validatorEnabled": self.validation_enabled,
            "allowedCategories": sorted(c.value for c in self.allowed_categories),
            "allowDangerousCommands": self.allow_dangerous_commands,
            "cwdRoots": list(self.cwd_roots),
        }


def parse_categories(raw: Any) -> FrozenSet[CommandCategory]:
    """Parse a comma string or list of category names; unknown names are dropped."""
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        names = [part for part in raw.split(",")]
    elif isinstance(raw, (list, tuple, set, frozenset)):
        names = [str(part) for part in raw]
    else:
        return frozenset()
    parsed = set()
    for name in names:
        key = name.strip().lower()
        if not key:
            continue
        if key in _CATEGORY_ALIASES:
            parsed.add(_CATEGORY_ALIASES[key])
            continue
        try:
            parsed.add(CommandCategory(key))
        except ValueError:
            logger.warning("Ignoring unknown command category in policy: %s", name)
    return frozenset(parsed)


def _read_policy_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"policy file {path} must contain a mapping")
    return data


def _resolve_roots(raw: Iterable[str]) -> Tuple[str, ...]:
    roots: List[str] = []
    for entry in raw:
        entry = str(entry).strip()
        if not entry:
            continue
        resolved = os.path.realpath(os.path.expanduser(entry))
        if resolved not in roots:
            roots.append(resolved)
    return tuple(roots)


def load_policy(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> CommandPolicy:
    """
    Build the immutable command policy.

    Precedence: environment variables over the YAML policy file over the
    built-in defaults. Raises ValueError for an unreadable/invalid policy file so
    that a broken policy fails startup instead of silently widening access.
    """
    env = os.environ if env is None else env
    try:
        data = _read_policy_file(path or POLICY_PATH)
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid command policy file: {exc}") from exc

    validation_enabled = bool(data.get("validation_enabled", True))
    if "ENABLE_COMMAND_VALIDATION" in env:
        validation_enabled = str(env["ENABLE_COMMAND_VALIDATION"]).strip().lower() != "false"

    allowed = DEFAULT_ALLOWED_CATEGORIES
    if "allowed_categories" in data:
        allowed = parse_categories(data.get("allowed_categories"))
    if env.get("ALLOWED_COMMAND_CATEGORIES"):
        allowed = parse_categories(env["ALLOWED_COMMAND_CATEGORIES"])

    blocked = list(DEFAULT_BLOCKED_PATTERNS)
    for extra in data.get("extra_blocked_patterns") or []:
        blocked.append(str(extra))

    allow_dangerous = bool(data.get("allow_dangerous_commands", False))
    if "SHELL_RUN_ALLOW_DANGEROUS" in env:
        allow_dangerous = str(env["SHELL_RUN_ALLOW_DANGEROUS"]).strip().lower() == "true"

    roots = _default_cwd_roots()
    if data.get("cwd_roots"):
        roots = _resolve_roots(data["cwd_roots"])
    if env.get("SHELL_RUN_CWD_ROOTS"):
        roots = _resolve_roots(env["SHELL_RUN_CWD_ROOTS"].split(os.pathsep))

    try:
        compiled_blocked = _compile(blocked)
    except re.error as exc:
        raise ValueError(f"invalid blocked pattern in command policy: {exc}") from exc

    policy = CommandPolicy(
        validation_enabled=validation_enabled,
        allowed_categories=allowed,
        blocked_patterns=compiled_blocked,
        allow_dangerous_commands=allow_dangerous,
        cwd_roots=roots,
    )
    logger.info(
        "Command policy loaded: validation=%s allowed=%s roots=%s",
        policy.validation_enabled,
        sorted(c.value for c in policy.allowed_categories),
        list(policy.cwd_roots),
    )
    return policy


__all__ = [
    "CommandCategory",
    "RiskLevel",
    "CommandPolicy",
    "ALLOWED_COMMANDS",
    "DANGEROUS_COMMANDS",
    "SHELL_INTERPRETERS",
    "parse_categories",
    "load_policy",
]
