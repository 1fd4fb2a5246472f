"""
azure_resources
---------------

리소스 그룹 / Azure Container Registry / Container Instance 를
az CLI 로 조회·생성·삭제하는 모듈.

리소스 그룹은 az group create 자체가 멱등이므로 항상 생성 명령을 보내고,
레지스트리는 조회 후 없을 때만 생성한다.
컨테이너 인스턴스는 덮어쓰기 생성이 되지 않으므로 이미 있으면 지우고 다시 만든다.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .config import AzureDeployConfig
from .errors import CommandError, CommandTimeoutError, DeploymentError
from .logging_utils import get_logger
from .subprocess_utils import run_command


logger = get_logger(__name__)


MCPO_COMMAND_LINE = "mcpo --config /app/config.json --port {port}"


class ResourceKind(str, Enum):
    RESOURCE_GROUP = "resource_group"
    REGISTRY = "registry"
    CONTAINER = "container"


@dataclass(frozen=True)
class ResourceIdentity:
    resource_group: str
    name: str
    location: str = ""


@dataclass(frozen=True)
class RegistryCredentials:
    login_server: str
    username: str
    password: str


@dataclass(frozen=True)
class InstanceStatus:
    fqdn: Optional[str]
    state: Optional[str]

    @property
    def is_running(self) -> bool:
        return (self.state or "").lower() == "running"


def _tsv_value(output: str) -> Optional[str]:
    value = output.strip()
    if not value or value == "None":
        return None
    return value


def _fmt_number(value: float) -> str:
    return f"{value:g}"


# -----------------------------
# 조회
# -----------------------------
def resource_exists(kind: ResourceKind, identity: ResourceIdentity, *, timeout: float = 120.0) -> bool:
    """
    show 명령이 성공하면 존재하는 것으로 본다.
    (az 는 리소스가 없으면 non-zero 로 종료한다)
    """
    if kind is ResourceKind.RESOURCE_GROUP:
        cmd = ["az", "group", "show", "--name", identity.name, "--query", "id", "--output", "tsv"]
    elif kind is ResourceKind.REGISTRY:
        cmd = [
            "az", "acr", "show",
            "--name", identity.name,
            "--resource-group", identity.resource_group,
            "--query", "id",
            "--output", "tsv",
        ]
    else:
        cmd = [
            "az", "container", "show",
            "--resource-group", identity.resource_group,
            "--name", identity.name,
            "--query", "id",
            "--output", "tsv",
        ]

    try:
        run_command(cmd, timeout=timeout)
    except CommandTimeoutError as e:
        # 시간 초과는 "없음" 이 아니다.
        raise DeploymentError(f"리소스 조회 시간 초과: {kind.value} {identity.name}\n{e}") from e
    except CommandError as e:
        logger.debug("리소스 조회 실패 (없는 것으로 간주): %s %s: %s", kind.value, identity.name, e)
        return False
    return True


def registry_login_server(identity: ResourceIdentity, *, timeout: float = 120.0) -> str:
    cmd = [
        "az", "acr", "show",
        "--name", identity.name,
        "--resource-group", identity.resource_group,
        "--query", "loginServer",
        "--output", "tsv",
    ]
    try:
        result = run_command(cmd, timeout=timeout)
    except CommandError as e:
        raise DeploymentError(f"ACR login server 조회 실패: {identity.name}\n{e}") from e
    login_server = _tsv_value(result.stdout)
    if not login_server:
        raise DeploymentError(f"ACR login server 를 확인할 수 없습니다: {identity.name}")
    return login_server


def registry_credentials(identity: ResourceIdentity, login_server: str, *, timeout: float = 120.0) -> RegistryCredentials:
    """
    admin 계정 자격 증명을 조회한다. (ACR 생성 시 --admin-enabled true 전제)
    """
    base = ["az", "acr", "credential", "show", "--name", identity.name, "--resource-group", identity.resource_group]
    try:
        username = run_command([*base, "--query", "username", "--output", "tsv"], timeout=timeout)
        password = run_command(
            [*base, "--query", "passwords[0].value", "--output", "tsv"],
            timeout=timeout,
            log_output=False,
        )
    except CommandError as e:
        raise DeploymentError(f"ACR 자격 증명 조회 실패: {identity.name}\n{e}") from e

    user_value = _tsv_value(username.stdout)
    password_value = _tsv_value(password.stdout)
    if not user_value or not password_value:
        raise DeploymentError(
            f"ACR admin 자격 증명이 비어 있습니다: {identity.name} "
            "(az acr update --name <acr> --admin-enabled true 로 활성화하세요)"
        )
    return RegistryCredentials(login_server=login_server, username=user_value, password=password_value)


def show_instance_status(identity: ResourceIdentity, *, timeout: float = 60.0) -> InstanceStatus:
    """
    FQDN 과 상태를 조회한다. timeout 은 두 번의 az 호출을 합친 시간이다.
    """
    deadline = time.monotonic() + timeout
    base = ["az", "container", "show", "--resource-group", identity.resource_group, "--name", identity.name]
    fqdn = run_command([*base, "--query", "ipAddress.fqdn", "--output", "tsv"], timeout=timeout)
    state = run_command(
        [*base, "--query", "instanceView.state", "--output", "tsv"],
        timeout=max(deadline - time.monotonic(), 1.0),
    )
    return InstanceStatus(fqdn=_tsv_value(fqdn.stdout), state=_tsv_value(state.stdout))


def fetch_logs(identity: ResourceIdentity, *, tail: int = 20, timeout: float = 120.0) -> str:
    cmd = [
        "az", "container", "logs",
        "--resource-group", identity.resource_group,
        "--name", identity.name,
        "--tail", str(tail),
    ]
    return run_command(cmd, timeout=timeout).stdout


# -----------------------------
# 생성/삭제
# -----------------------------
def delete_container(identity: ResourceIdentity, *, timeout: float = 600.0) -> None:
    cmd = [
        "az", "container", "delete",
        "--resource-group", identity.resource_group,
        "--name", identity.name,
        "--yes",
        "--output", "none",
    ]
    try:
        run_command(cmd, timeout=timeout)
    except CommandError as e:
        raise DeploymentError(f"기존 컨테이너 삭제 실패: {identity.name}\n{e}") from e


def delete_resource_group(name: str, *, timeout: float = 120.0) -> None:
    cmd = ["az", "group", "delete", "--name", name, "--yes", "--no-wait"]
    try:
        run_command(cmd, timeout=timeout)
    except CommandError as e:
        raise DeploymentError(f"리소스 그룹 삭제 요청 실패: {name}\n{e}") from e


def ensure_idempotent_resource(kind: ResourceKind, identity: ResourceIdentity, *, timeout: float = 600.0) -> str:
    """
    재실행해도 안전하도록 리소스를 준비한다.

    Returns:
        수행한 동작: "created" | "existing" | "deleted" | "absent"
    """
    if kind is ResourceKind.RESOURCE_GROUP:
        logger.info("리소스 그룹 준비: %s (%s)", identity.name, identity.location)
        cmd = ["az", "group", "create", "--name", identity.name, "--location", identity.location, "--output", "none"]
        try:
            run_command(cmd, timeout=timeout)
        except CommandError as e:
            raise DeploymentError(f"리소스 그룹 생성 실패: {identity.name}\n{e}") from e
        return "created"

    if kind is ResourceKind.REGISTRY:
        if resource_exists(kind, identity, timeout=timeout):
            logger.info("기존 ACR 을 사용합니다: %s", identity.name)
            return "existing"
        cmd = [
            "az", "acr", "create",
            "--name", identity.name,
            "--resource-group", identity.resource_group,
            "--location", identity.location,
            "--sku", "Basic",
            "--admin-enabled", "true",
            "--output", "none",
        ]
        try:
            run_command(cmd, timeout=timeout)
        except CommandError as e:
            raise DeploymentError(f"ACR 생성 실패: {identity.name}\n{e}") from e
        logger.info("ACR 을 생성했습니다: %s", identity.name)
        return "created"

    if resource_exists(kind, identity, timeout=timeout):
        logger.warning("컨테이너가 이미 존재하여 삭제 후 다시 생성합니다: %s", identity.name)
        delete_container(identity, timeout=timeout)
        return "deleted"
    return "absent"


def build_create_command(
    cfg: AzureDeployConfig,
    image_ref: str,
    credentials: Optional[RegistryCredentials] = None,
) -> List[str]:
    cmd = [
        "az", "container", "create",
        "--resource-group", cfg.resource_group,
        "--name", cfg.container_name,
        "--image", image_ref,
        "--dns-name-label", cfg.dns_label,
        "--ports", str(cfg.port),
        "--os-type", "Linux",
        "--secure-environment-variables", f"TAVILY_API_KEY={cfg.tavily_api_key}",
        "--command-line", MCPO_COMMAND_LINE.format(port=cfg.port),
        "--cpu", _fmt_number(cfg.cpu),
        "--memory", _fmt_number(cfg.memory_gb),
        "--output", "none",
    ]
    if credentials is not None:
        cmd += [
            "--registry-login-server", credentials.login_server,
            "--registry-username", credentials.username,
            "--registry-password", credentials.password,
        ]
    return cmd


def create_instance(
    cfg: AzureDeployConfig,
    image_ref: str,
    *,
    credentials: Optional[RegistryCredentials] = None,
    timeout: float = 900.0,
) -> None:
    """
    Azure Container Instance 를 생성한다. 실패 시 az 의 에러 출력을 그대로 담아 DeploymentError.
    """
    secrets = [cfg.tavily_api_key]
    if credentials is not None:
        secrets.append(credentials.password)

    logger.info("컨테이너 생성: %s (image=%s)", cfg.container_name, image_ref)
    try:
        run_command(build_create_command(cfg, image_ref, credentials), timeout=timeout, secrets=secrets)
    except CommandError as e:
        raise DeploymentError(f"컨테이너 배포 실패: {cfg.container_name}\n{e}") from e
