# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Command runner: executes external tools and captures their outcome."""

from __future__ import annotations

import os
import re
import subprocess
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

import sh

from lakehouse_installer import console, logger
from lakehouse_installer.constants import (
    DOCKER_WRAPPER,
    EXIT_COMMAND_NOT_FOUND,
    EXIT_NOT_EXECUTABLE,
    EXIT_TIMEOUT,
)

_EKSCTL_FORWARD_PATTERN = re.compile(
    r"\[\s*✖\s*\]|Error:|failed to|AlreadyExistsException|already exists", re.IGNORECASE
)
_EKSCTL_WARNING_PATTERN = re.compile(r"\[!\].*(error|fail)", re.IGNORECASE)


class ExecMode(str, Enum):
    """Where external tools run."""

    LOCAL = "local"
    DOCKER = "docker"


@dataclass(frozen=True)
class ExecContext:
    """Execution context threaded into every command.

    Attributes:
        mode: Run tools on the host or through the container wrapper script.
        wrapper: Wrapper script used in docker mode; receives the program and its args.
        env: Extra environment applied to every command.
        cwd: Working directory for commands, or None for the current one.
        verbose: Stream output of every command, not only long-running ones.
    """

    mode: ExecMode = ExecMode.LOCAL
    wrapper: str = DOCKER_WRAPPER
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None
    verbose: bool = False


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command. A non-zero exit is data, not a fault."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def not_found(self) -> bool:
        return self.exit_code == EXIT_COMMAND_NOT_FOUND

    @property
    def output(self) -> str:
        """stderr when present, else stdout; what an operator wants to read on failure."""
        return self.stderr or self.stdout

    def contains(self, *needles: str) -> bool:
        """Whether stdout or stderr contains any of *needles* (case-insensitive)."""
        haystack = f"{self.stdout}\n{self.stderr}".lower()
        return any(needle.lower() in haystack for needle in needles)


def is_long_running(program: str, args: Sequence[str]) -> bool:
    """Commands whose output is streamed live to the operator.

    Cluster creation and deletion take many minutes, and ``helm --wait``
    blocks until pods are ready.
    """
    head = list(args[:2])
    if program == "eksctl" and head in (["create", "cluster"], ["delete", "cluster"]):
        return True
    return program == "helm" and "--wait" in args


def _forward_line(program: str, args: Sequence[str], line: str) -> bool:
    """Filter for streamed lines; eksctl cluster creation only surfaces problems."""
    if not (program == "eksctl" and list(args[:2]) == ["create", "cluster"]):
        return True
    text = line.strip()
    if not text:
        return False
    return bool(_EKSCTL_FORWARD_PATTERN.search(text) or _EKSCTL_WARNING_PATTERN.search(text))


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err


class CommandRunner:
    """Runs external programs in an explicit execution context.

    ``run`` never raises for a non-zero exit or a missing program: a missing
    program comes back as exit code 127 with an explanatory stderr, so every
    caller branches on one result shape.
    """

    def __init__(self, context: ExecContext | None = None) -> None:
        self.context = context or ExecContext()

    def _argv(self, program: str, args: Sequence[str]) -> list[str]:
        if self.context.mode is ExecMode.DOCKER:
            return [self.context.wrapper, program, *args]
        return [program, *args]

    def _environ(self, env: Mapping[str, str] | None) -> dict[str, str]:
        merged = dict(os.environ)
        merged.update(self.context.env)
        if env:
            merged.update(env)
        return merged

    def _not_found(self, program: str) -> CommandResult:
        if self.context.mode is ExecMode.LOCAL:
            hint = "Install it or use --exec docker to run in the container."
        else:
            hint = f"Check the container wrapper {self.context.wrapper}."
        return CommandResult(EXIT_COMMAND_NOT_FOUND, "", f"Command not found: {program}. {hint}")

    def run(
        self,
        program: str,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run *program* with *args* and capture its outcome.

        Args:
            program: Executable name (``kubectl``, ``helm``, ``aws``, ...).
            args: Arguments passed verbatim, no shell involved.
            env: Extra environment for this call only.
            timeout: Seconds before the process is killed, or None for no limit.

        Returns:
            The captured exit code, stdout and stderr (both stripped).
        """
        argv = self._argv(program, args)
        logger.debug("exec: %s", " ".join(argv))
        if self.context.verbose or is_long_running(program, args):
            result = self._run_streaming(program, args, argv, env, timeout)
        else:
            result = self._run_captured(program, argv, env, timeout)
        logger.debug("exit %d: %s", result.exit_code, argv[0])
        return result

    def _run_captured(
        self,
        program: str,
        argv: list[str],
        env: Mapping[str, str] | None,
        timeout: float | None,
    ) -> CommandResult:
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=self._environ(env),
                cwd=self.context.cwd,
            )
        except FileNotFoundError:
            return self._not_found(program)
        except PermissionError as exc:
            return CommandResult(EXIT_NOT_EXECUTABLE, "", str(exc))
        except subprocess.TimeoutExpired:
            return CommandResult(EXIT_TIMEOUT, "", f"{program} timed out after {timeout}s")
        except (subprocess.SubprocessError, OSError) as exc:
            return CommandResult(1, "", str(exc))
        return CommandResult(proc.returncode, (proc.stdout or "").strip(), (proc.stderr or "").strip())

    def _run_streaming(
        self,
        program: str,
        args: Sequence[str],
        argv: list[str],
        env: Mapping[str, str] | None,
        timeout: float | None = None,
    ) -> CommandResult:
        out_lines: list[str] = []
        err_lines: list[str] = []

        def _sink(store: list[str]):
            def _on_line(line: str) -> None:
                store.append(line)
                if _forward_line(program, args, line):
                    sys.stderr.write(line if line.endswith("\n") else line + "\n")
            return _on_line

        try:
            proc = sh.Command(argv[0])(
                *argv[1:],
                _env=self._environ(env),
                _cwd=self.context.cwd,
                _out=_sink(out_lines),
                _err=_sink(err_lines),
                _ok_code=list(range(256)),
                _timeout=timeout,
                _return_cmd=True,
            )
        except sh.CommandNotFound:
            return self._not_found(program)
        except sh.TimeoutException:
            return CommandResult(EXIT_TIMEOUT, "".join(out_lines).strip(), f"{program} timed out after {timeout}s")
        except sh.ErrorReturnCode as exc:
            # Killed by a signal: sh reports a negative exit code outside _ok_code.
            return CommandResult(exc.exit_code, "".join(out_lines).strip(), "".join(err_lines).strip())
        except OSError as exc:
            console.print(f"[red]❌ Failed to start {program}: {exc}[/red]")
            return CommandResult(1, "", str(exc))
        return CommandResult(proc.exit_code, "".join(out_lines).strip(), "".join(err_lines).strip())
