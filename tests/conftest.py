"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 mcpo_deploy 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.

fake_cli 픽스처는 각 모듈의 run_command 를 바꿔치기하여 az/docker 호출을 기록하고
prefix 규칙에 따라 결과를 돌려준다.
"""

from __future__ import annotations

import os
import sys
from typing import Callable, List, Optional, Sequence, Tuple, Union

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


MUTATING_PREFIXES = [
    ("az", "group", "create"),
    ("az", "group", "delete"),
    ("az", "acr", "create"),
    ("az", "acr", "build"),
    ("az", "container", "create"),
    ("az", "container", "delete"),
    ("docker", "build"),
    ("docker", "tag"),
    ("docker", "push"),
]


class FakeCli:
    """
    run_command 대역.

    on(prefix..., stdout=..., returncode=...) 로 규칙을 추가하며, 나중에 추가한 규칙이 우선한다.
    handler 를 넘기면 cmd 를 받아 (returncode, stdout) 를 돌려주는 함수로 동작한다.
    """

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self._rules: List[Tuple[Tuple[str, ...], Union[Tuple[int, str], Callable]]] = []

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        returncode: int = 0,
        handler: Optional[Callable[[List[str]], Tuple[int, str]]] = None,
    ) -> None:
        self._rules.append((tuple(prefix), handler or (returncode, stdout)))

    def __call__(self, cmd: Sequence[str], **kwargs) -> "RunResult":  # noqa: ANN003, F821
        from mcpo_deploy.errors import CommandError
        from mcpo_deploy.subprocess_utils import RunResult

        cmd = list(cmd)
        self.calls.append(cmd)
        returncode, stdout = 0, ""
        for prefix, rule in reversed(self._rules):
            if tuple(cmd[: len(prefix)]) == prefix:
                returncode, stdout = rule(cmd) if callable(rule) else rule
                break
        if returncode != 0:
            raise CommandError(
                f"명령 실행 실패: {' '.join(cmd)} (exit={returncode})",
                cmd=cmd,
                returncode=returncode,
                output=stdout,
            )
        return RunResult(returncode=0, stdout=stdout, stderr="")

    def commands(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if tuple(c[: len(prefix)]) == prefix]

    def mutating_calls(self) -> List[List[str]]:
        return [c for c in self.calls if any(tuple(c[: len(p)]) == p for p in MUTATING_PREFIXES)]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_cli(monkeypatch: pytest.MonkeyPatch) -> FakeCli:
    from mcpo_deploy import azure_resources, docker_image, prerequisites

    cli = FakeCli()
    for module in (azure_resources, docker_image, prerequisites):
        monkeypatch.setattr(module, "run_command", cli)
    monkeypatch.setattr(prerequisites, "which", lambda name: f"/usr/bin/{name}")
    return cli


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
