"""
errors
------

배포 단계별 예외 계층.

ReadinessError 를 제외한 DeployError 는 모두 치명적이며 파이프라인을 즉시 중단시킨다.
"""

from __future__ import annotations

from typing import Optional, Sequence


class DeployError(RuntimeError):
    fatal: bool = True


class PrerequisiteMissingError(DeployError):
    """외부 도구가 설치되어 있지 않거나 인증/실행 상태가 아니다."""

    def __init__(self, tool: str, hint: str, detail: str = "") -> None:
        self.tool = tool
        self.hint = hint
        message = f"필수 도구를 사용할 수 없습니다: {tool} ({hint})"
        if detail:
            message += f"\n{detail}"
        super().__init__(message)


class ConfigurationError(DeployError):
    pass


class BuildError(DeployError):
    pass


class DeploymentError(DeployError):
    pass


class PipelineTimeoutError(DeploymentError):
    pass


class ReadinessError(DeployError):
    fatal = False


class CommandError(RuntimeError):
    """외부 명령이 실패했을 때 subprocess_utils 가 올리는 예외."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: Optional[int] = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = returncode
        self.output = output


class CommandNotFoundError(CommandError):
    pass


class CommandTimeoutError(CommandError):
    pass
