from __future__ import annotations

import subprocess
import sys
import threading
from dataclasses import dataclass
from textwrap import shorten
from typing import Iterable, Mapping, Sequence

from .errors import CommandError, CommandNotFoundError, CommandTimeoutError
from .logging_utils import get_logger


logger = get_logger(__name__)

_REDACTED = "****"


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, _REDACTED)
    return text


def format_command(cmd: Sequence[str], secrets: Iterable[str] = ()) -> str:
    return redact(" ".join(cmd), secrets)


def _failure_detail(stdout: str, stderr: str, secrets: Sequence[str]) -> str:
    stdout = redact((stdout or "").strip(), secrets)
    stderr = redact((stderr or "").strip(), secrets)
    if stderr:
        return "\nstderr:\n" + shorten(stderr, width=2000)
    if stdout:
        return "\nstdout:\n" + shorten(stdout, width=2000)
    return ""


def _not_found(cmd: Sequence[str]) -> CommandNotFoundError:
    return CommandNotFoundError(
        f"필요한 명령을 찾을 수 없습니다: {cmd[0]} (az/docker 가 설치되어 있는지 확인하세요)",
        cmd=cmd,
    )


def _timed_out(cmd: Sequence[str], timeout: float | None, secrets: Sequence[str]) -> CommandTimeoutError:
    return CommandTimeoutError(
        f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {format_command(cmd, secrets)}",
        cmd=cmd,
    )


def _stream(
    cmd: Sequence[str],
    *,
    cwd: str | None,
    env: Mapping[str, str] | None,
    timeout: float | None,
    secrets: Sequence[str],
) -> RunResult:
    # docker/az 는 진행 로그를 stderr 로도 내보내므로 STDOUT 으로 합친다.
    try:
        proc = subprocess.Popen(  # noqa: S603
            list(cmd),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError as e:
        raise _not_found(cmd) from e

    killed = threading.Event()

    def _kill() -> None:
        killed.set()
        proc.kill()

    timer: threading.Timer | None = None
    if timeout is not None:
        timer = threading.Timer(float(timeout), _kill)
        timer.daemon = True
        timer.start()

    out_lines: list[str] = []
    try:
        assert proc.stdout is not None
        for line in proc.stdout:
            out_lines.append(line)
            sys.stdout.write(redact(line, secrets))
            sys.stdout.flush()
        returncode = proc.wait()
    finally:
        if timer is not None:
            timer.cancel()
        if proc.stdout is not None:
            proc.stdout.close()

    output = "".join(out_lines)
    if killed.is_set():
        raise _timed_out(cmd, timeout, secrets)
    if returncode != 0:
        raise CommandError(
            f"명령 실행 실패: {format_command(cmd, secrets)} (exit={returncode})"
            + _failure_detail(output, "", secrets),
            cmd=cmd,
            returncode=returncode,
            output=redact(output, secrets),
        )
    return RunResult(returncode=returncode, stdout=output, stderr="")


def run_command(
    cmd: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = 900.0,
    stream_output: bool = False,
    interactive: bool = False,
    secrets: Sequence[str] = (),
    log_output: bool = True,
) -> RunResult:
    """
    subprocess 실행 공통 유틸.

    - 기본: stdout/stderr 캡처, 실패 시 요약을 CommandError 메시지에 포함
    - stream_output=True : 출력을 실시간으로 터미널에 흘린다 (docker build 등 오래 걸리는 명령)
    - interactive=True   : 표준 입출력을 그대로 넘긴다 (docker login 처럼 입력이 필요한 명령)

    secrets 에 넘긴 값은 로그/에러 메시지에서 마스킹된다.
    log_output=False 면 캡처한 출력을 debug 로그에 남기지 않는다 (출력 자체가 비밀인 조회).
    """
    logger.info("명령 실행: %s", format_command(cmd, secrets))

    if stream_output:
        return _stream(cmd, cwd=cwd, env=env, timeout=timeout, secrets=secrets)

    try:
        result = subprocess.run(  # noqa: S603
            list(cmd),
            check=True,
            capture_output=not interactive,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as e:
        raise _not_found(cmd) from e
    except subprocess.TimeoutExpired as e:
        raise _timed_out(cmd, timeout, secrets) from e
    except subprocess.CalledProcessError as e:
        stdout = e.stdout or ""
        stderr = e.stderr or ""
        raise CommandError(
            f"명령 실행 실패: {format_command(cmd, secrets)} (exit={e.returncode})"
            + _failure_detail(stdout, stderr, secrets),
            cmd=cmd,
            returncode=e.returncode,
            output=redact((stderr or stdout).strip(), secrets),
        ) from e

    stdout = result.stdout or ""
    stderr = result.stderr or ""
    if log_output and stdout:
        logger.debug("명령 stdout: %s", shorten(redact(stdout.strip(), secrets), width=2000))
    if log_output and stderr:
        logger.debug("명령 stderr: %s", shorten(redact(stderr.strip(), secrets), width=2000))
    return RunResult(returncode=result.returncode, stdout=stdout, stderr=stderr)
