"""
docker_image
------------

MCPO 도커 이미지 빌드/태그/푸시를 담당하는 모듈.

빌드 방식:
- local_docker: 로컬 docker build 후 레지스트리로 push
- acr_build   : az acr build 로 원격 빌드 (로컬 Docker 불필요)
"""

from __future__ import annotations

from typing import Optional

from .errors import BuildError, CommandError, PrerequisiteMissingError
from .logging_utils import get_logger
from .subprocess_utils import run_command


logger = get_logger(__name__)


def build_image(image_ref: str, *, context_dir: str = ".", timeout: float = 1800.0) -> None:
    try:
        run_command(["docker", "build", "-t", image_ref, context_dir], timeout=timeout, stream_output=True)
    except CommandError as e:
        raise BuildError(f"Docker 이미지 빌드 실패: {image_ref}\n{e}") from e
    logger.info("Docker 이미지 빌드 완료: %s", image_ref)


def tag_image(source_ref: str, target_ref: str, *, timeout: float = 120.0) -> None:
    try:
        run_command(["docker", "tag", source_ref, target_ref], timeout=timeout)
    except CommandError as e:
        raise BuildError(f"Docker 이미지 태그 실패: {source_ref} -> {target_ref}\n{e}") from e


def push_image(image_ref: str, *, timeout: float = 1800.0) -> None:
    try:
        run_command(["docker", "push", image_ref], timeout=timeout, stream_output=True)
    except CommandError as e:
        raise BuildError(f"이미지 푸시 실패: {image_ref}\n{e}") from e
    logger.info("이미지 푸시 완료: %s", image_ref)


def remote_build(registry_name: str, image_ref: str, *, context_dir: str = ".", timeout: float = 1800.0) -> None:
    """
    az acr build 로 ACR 안에서 빌드한다.
    --image 에는 login server 를 뺀 repository:tag 만 넘긴다.
    """
    repo_and_tag = image_ref.split("/", 1)[1] if "/" in image_ref else image_ref
    cmd = [
        "az", "acr", "build",
        "--registry", registry_name,
        "--image", repo_and_tag,
        context_dir,
    ]
    try:
        run_command(cmd, timeout=timeout, stream_output=True)
    except CommandError as e:
        raise BuildError(f"ACR 원격 빌드 실패: {image_ref}\n{e}") from e
    logger.info("ACR 원격 빌드 완료: %s", image_ref)


def registry_login(registry_name: str, *, timeout: float = 120.0) -> None:
    try:
        run_command(["az", "acr", "login", "--name", registry_name], timeout=timeout)
    except CommandError as e:
        raise PrerequisiteMissingError(
            "docker",
            f"ACR 로그인에 실패했습니다: az acr login --name {registry_name}",
            detail=str(e),
        ) from e


def is_logged_in_to_dockerhub(username: str, *, timeout: float = 60.0) -> bool:
    try:
        result = run_command(["docker", "info"], timeout=timeout)
    except CommandError:
        return False
    return f"Username: {username}" in result.stdout


def ensure_dockerhub_login(username: str, *, timeout: float = 300.0) -> None:
    """
    docker info 출력에 해당 사용자로 로그인되어 있지 않으면 docker login 을 대화형으로 실행한다.
    """
    if is_logged_in_to_dockerhub(username, timeout=min(timeout, 60.0)):
        logger.info("DockerHub 에 이미 로그인되어 있습니다: %s", username)
        return

    logger.info("DockerHub 로그인 시도: %s", username)
    try:
        run_command(["docker", "login"], timeout=timeout, interactive=True)
    except CommandError as e:
        raise PrerequisiteMissingError("docker", "DockerHub 로그인에 실패했습니다: docker login", detail=str(e)) from e


def image_size(image_ref: str, *, timeout: float = 60.0) -> Optional[str]:
    try:
        result = run_command(["docker", "images", image_ref, "--format", "{{.Size}}"], timeout=timeout)
    except CommandError as e:
        logger.debug("이미지 크기 조회 실패: %s", e)
        return None
    lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    return lines[-1] if lines else None


def build_and_publish_image(
    image_ref: str,
    *,
    mode: str = "local_docker",
    context_dir: str = ".",
    registry_name: Optional[str] = None,
    timeout: float = 1800.0,
) -> str:
    """
    이미지를 빌드하고 레지스트리에 올린 뒤 최종 이미지 참조를 돌려준다.
    외부 도구가 실패하면 BuildError (재시도 없음).
    """
    mode = (mode or "local_docker").lower()
    logger.info("이미지 빌드 모드: %s", mode)

    if mode == "local_docker":
        if registry_name:
            registry_login(registry_name, timeout=min(timeout, 120.0))
        build_image(image_ref, context_dir=context_dir, timeout=timeout)
        push_image(image_ref, timeout=timeout)
    elif mode == "acr_build":
        if not registry_name:
            raise BuildError("acr_build 모드에는 ACR 이름이 필요합니다.")
        remote_build(registry_name, image_ref, context_dir=context_dir, timeout=timeout)
    else:
        raise BuildError(f"알 수 없는 빌드 모드입니다: {mode!r} (local_docker | acr_build 중 하나)")

    logger.info("이미지 빌드/푸시 완료: %s", image_ref)
    return image_ref
