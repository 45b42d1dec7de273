"""Argument-vector command templates and their execution.

A template is a sequence of tokens with `${name}` placeholders. Resolution
produces a plain argument list for `subprocess.run`; no shell is involved, so
tokens are never quoted or escaped.
"""

from __future__ import annotations

import os
import re
import shlex
import signal
import subprocess
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from . import core
from .core import log
from .errors import ConfigurationError, ToolFailure, TransformTimeoutError

OPTIONS = "options"
SOURCE = "source"
TARGET = "target"

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_SPLIT_PREFIX = "SPLIT:"

DEFAULT_ERROR_CODES = frozenset({1, 2})


@dataclass(frozen=True)
class CommandTemplate:
    """A regex key and the argument tokens used when the key matches."""

    match_pattern: str
    arguments: tuple[str, ...]

    def matches(self, key: str) -> bool:
        return re.fullmatch(self.match_pattern, key) is not None


@dataclass(frozen=True)
class ExecutionResult:
    command: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    success: bool = True

    @property
    def diagnostics(self) -> str:
        return (self.stderr or self.stdout or "").strip()


@dataclass
class RuntimeExec:
    """Resolves a command template and runs it with a bounded wait."""

    commands: Sequence[CommandTemplate]
    default_properties: Mapping[str, str | Sequence[str] | None] = field(default_factory=dict)
    error_codes: frozenset[int] = DEFAULT_ERROR_CODES

    def __post_init__(self) -> None:
        self.commands = tuple(self.commands)
        self.default_properties = dict(self.default_properties)
        self.error_codes = frozenset(self.error_codes)

    def command_for(self, key: str) -> CommandTemplate:
        for template in self.commands:
            if template.matches(key):
                return template
        raise ConfigurationError(f"No command configured for {key!r}")

    def build_command(
        self, key: str, properties: Mapping[str, str | Sequence[str] | None] | None = None
    ) -> list[str]:
        """Substitute placeholders and return the argument vector."""
        values: dict[str, str | Sequence[str] | None] = dict(self.default_properties)
        values.update(properties or {})
        argv: list[str] = []
        for token in self.command_for(key).arguments:
            if token.startswith(_SPLIT_PREFIX):
                token = token[len(_SPLIT_PREFIX) :]
            whole = _PLACEHOLDER.fullmatch(token)
            if whole:
                value = values.get(whole.group(1))
                if value is None:
                    continue
                if isinstance(value, str):
                    argv.append(value)
                else:
                    argv.extend(str(v) for v in value)
                continue
            argv.append(_PLACEHOLDER.sub(lambda m: _as_text(values.get(m.group(1))), token))
        return argv

    def is_failure(self, exit_code: int) -> bool:
        return exit_code in self.error_codes

    def execute(
        self,
        properties: Mapping[str, str | Sequence[str] | None] | None = None,
        *,
        key: str = ".*",
        timeout_ms: int | None = None,
    ) -> ExecutionResult:
        """Run the resolved command, killing it if it outlives the timeout."""
        argv = self.build_command(key, properties)
        if timeout_ms is None or timeout_ms <= 0:
            timeout_ms = core.TIMEOUT_MS
        log(f"[RUN  ] {shlex.join(argv)}", level="DEBUG")
        try:
            proc = subprocess.Popen(  # noqa: S603
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=(os.name != "nt"),
            )
        except OSError as e:
            raise ToolFailure(f"Transformer could not be started: {e}", diagnostics=str(e)) from e
        try:
            stdout, stderr = proc.communicate(timeout=timeout_ms / 1000.0)
        except subprocess.TimeoutExpired as e:
            _kill_tree(proc)
            raise TransformTimeoutError(
                f"Transformer timed out after {timeout_ms}ms: {argv[0]}"
            ) from e
        except BaseException:
            _kill_tree(proc)
            raise
        return ExecutionResult(
            command=tuple(argv),
            exit_code=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            success=not self.is_failure(proc.returncode),
        )


def _kill_tree(proc: subprocess.Popen) -> None:
    # The child leads its own session, so the group id is its pid.
    if os.name != "nt":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:  # pragma: no cover - Windows
        proc.kill()
    proc.communicate()


def _as_text(value: str | Iterable[str] | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return " ".join(str(v) for v in value)
