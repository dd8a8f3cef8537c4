from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CmdResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    def __init__(self, result: CmdResult) -> None:
        self.result = result
        super().__init__(
            f"Command failed ({result.returncode}): {fmt_argv(result.argv)}\n{result.stderr.strip()}"
        )


class CommandTimeout(RuntimeError):
    def __init__(self, argv: Sequence[str], timeout: float) -> None:
        self.argv = list(argv)
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g}s: {fmt_argv(argv)}")


def fmt_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    cwd: str | None = None,
    input_text: str | None = None,
) -> CmdResult:
    """Run a command with consistent logging.

    - Always logs the command.
    - Captures stdout/stderr.
    - Raises CommandTimeout when `timeout` elapses (the child is killed by subprocess).
    - Raises CommandError on a non-zero exit when `check` is set.
    """

    argv_list = list(argv)
    logger.info("CMD %s", fmt_argv(argv_list))

    try:
        p = subprocess.run(
            argv_list,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=dict(os.environ, **(env or {})),
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandTimeout(argv_list, float(timeout or 0)) from e

    if p.stdout:
        logger.debug("STDOUT %s", p.stdout.strip())
    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    result = CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)
    if check and p.returncode != 0:
        raise CommandError(result)

    return result
