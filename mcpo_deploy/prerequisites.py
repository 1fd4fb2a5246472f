"""
prerequisites
-------------

az / docker CLI 가 설치되어 있고 사용할 수 있는 상태(로그인, 데몬 실행)인지 확인한다.
실패는 치명적이며 재시도하지 않는다.
"""

from __future__ import annotations

from dataclasses import dataclass
from shutil import which
from typing import Dict, Tuple

from .errors import CommandError, PrerequisiteMissingError
from .logging_utils import get_logger
from .subprocess_utils import run_command


logger = get_logger(__name__)


@dataclass(frozen=True)
class ToolRequirement:
    name: str
    install_hint: str
    probe_cmd: Tuple[str, ...]
    probe_hint: str


TOOL_REQUIREMENTS: Dict[str, ToolRequirement] = {
    "az": ToolRequirement(
        name="az",
        install_hint="Azure CLI 를 먼저 설치하세요: https://docs.microsoft.com/en-us/cli/azure/install-azure-cli",
        probe_cmd=("az", "account", "show", "--output", "none"),
        probe_hint="Azure 에 먼저 로그인하세요: az login",
    ),
    "docker": ToolRequirement(
        name="docker",
        install_hint="Docker 를 먼저 설치하세요: https://docs.docker.com/get-docker/",
        probe_cmd=("docker", "info"),
        probe_hint="Docker 가 실행 중이 아닙니다. Docker 를 먼저 시작하세요.",
    ),
}


def ensure_prerequisite_tool(tool_name: str, *, timeout: float = 60.0) -> None:
    """
    도구가 PATH 에 있는지, 그리고 probe 명령(az account show / docker info)이
    성공하는지 확인한다.
    """
    requirement = TOOL_REQUIREMENTS.get(tool_name)
    if requirement is None:
        raise ValueError(f"알 수 없는 도구입니다: {tool_name!r}")

    if which(requirement.name) is None:
        raise PrerequisiteMissingError(tool_name, requirement.install_hint)

    try:
        run_command(list(requirement.probe_cmd), timeout=timeout)
    except CommandError as e:
        raise PrerequisiteMissingError(tool_name, requirement.probe_hint, detail=str(e)) from e

    logger.info("필수 도구 확인 완료: %s", tool_name)


def check_tool(tool_name: str, *, timeout: float = 30.0) -> Tuple[bool, str]:
    """
    ensure_prerequisite_tool 과 같은 검사를 하되 예외 대신 (정상 여부, 상태 문자열)을 돌려준다.
    """
    try:
        ensure_prerequisite_tool(tool_name, timeout=timeout)
    except PrerequisiteMissingError as e:
        return False, f"{tool_name}: 사용 불가 ({e.hint})"
    return True, f"{tool_name}: 사용 가능"
