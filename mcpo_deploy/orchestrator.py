from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

import click

from . import (
    azure_resources,
    docker_image,
    mcpo_config,
    prerequisites,
    readiness,
)
from .azure_resources import RegistryCredentials, ResourceIdentity, ResourceKind
from .config import (
    AzureDeployConfig,
    ConfigSource,
    DockerHubPublishConfig,
    IMAGE_REPOSITORY,
    resolve_azure_config,
    resolve_dockerhub_config,
)
from .errors import BuildError, CommandError, ConfigurationError, DeployError, PipelineTimeoutError
from .logging_utils import (
    get_logger,
    print_error,
    print_status,
    print_success,
    print_warning,
)


logger = get_logger(__name__)


DEFAULT_PIPELINE_TIMEOUT = 1800.0
PREREQUISITE_TIMEOUT = 60.0


class Stage(str, Enum):
    NOT_STARTED = "NotStarted"
    PREREQUISITES_CHECKED = "PrerequisitesChecked"
    CONFIG_RESOLVED = "ConfigResolved"
    RESOURCE_GROUP_READY = "ResourceGroupReady"
    IMAGE_PUBLISHED = "ImagePublished"
    INSTANCE_CREATED = "InstanceCreated"
    READINESS_CHECKED = "ReadinessChecked"
    DONE = "Done"
    FAILED = "Failed"


@dataclass(frozen=True)
class StepResult:
    ok: bool
    value: Any = None
    error: Optional[DeployError] = None


def _step(fn: Callable[[], Any]) -> StepResult:
    try:
        return StepResult(ok=True, value=fn())
    except DeployError as e:
        return StepResult(ok=False, error=e)


class _Budget:
    """
    파이프라인 전체 제한 시간. 각 외부 호출의 timeout 을 남은 시간으로 자른다.
    """

    def __init__(self, total: float, clock: Callable[[], float]) -> None:
        self.total = total
        self._clock = clock
        self._deadline = clock() + total

    def remaining(self, cap: float) -> float:
        left = self._deadline - self._clock()
        if left <= 0:
            raise PipelineTimeoutError(
                f"전체 배포 제한 시간({self.total:g}초)을 초과했습니다."
            )
        return min(cap, left)


@dataclass
class PipelineReport:
    variant: str
    stage: Stage = Stage.NOT_STARTED
    failed_step: Optional[str] = None
    error: Optional[DeployError] = None
    details: List[str] = field(default_factory=list)
    endpoints: List[Tuple[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.stage is Stage.DONE

    def advance(self, stage: Stage) -> None:
        logger.debug("파이프라인 단계 전환: %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    def fail(self, step: str, error: Optional[DeployError]) -> "PipelineReport":
        logger.error("단계 실패: %s (%s)", step, self.stage.value)
        self.failed_step = step
        self.error = error
        self.stage = Stage.FAILED
        print_error(str(error))
        return self

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        print_warning(message)

    def summary(self) -> str:
        lines: List[str] = []
        lines.append(f"# Deploy summary ({self.variant})")
        lines.append(f"- stage: {self.stage.value}")
        if self.failed_step:
            lines.append(f"- failed step: {self.failed_step}")
        lines.extend(self.details)
        lines.append("")

        lines.append("## Endpoints")
        if self.endpoints:
            for label, url in self.endpoints:
                lines.append(f"- {label}: {url}")
        else:
            lines.append("- (none)")

        lines.append("")
        lines.append("## Warnings")
        if self.warnings:
            for w in self.warnings:
                lines.append(f"- {w}")
        else:
            lines.append("- (none)")

        if self.next_steps:
            lines.append("")
            lines.append("## Next steps")
            for s in self.next_steps:
                lines.append(f"- {s}")

        return "\n".join(lines)


# -----------------------------
# 공통
# -----------------------------
def _ensure_mcpo_config(path: str, report: PipelineReport) -> None:
    try:
        created = mcpo_config.ensure_config_file(path)
        has_placeholder = mcpo_config.contains_placeholder_secret(path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"config.json 을 준비하지 못했습니다: {path} ({e})") from e

    if created:
        print_warning("config.json 이 없어 템플릿을 생성했습니다.")
        print_success(f"Created config.json template: {path}")
    if has_placeholder:
        report.warn(
            f"config.json 에 placeholder 값({mcpo_config.PLACEHOLDER_SECRET})이 남아 있습니다. "
            "실제 키는 TAVILY_API_KEY 환경변수로 전달하세요."
        )


def _azure_endpoints(fqdn: str, port: int) -> List[Tuple[str, str]]:
    base = f"http://{fqdn}:{port}"
    endpoints = [
        ("MCPO server", base),
        ("API Documentation", f"{base}/docs"),
    ]
    for path, label in mcpo_config.SERVER_ENDPOINTS:
        endpoints.append((label, f"{base}/{path}/docs"))
    return endpoints


def _azure_next_steps(cfg: AzureDeployConfig) -> List[str]:
    rg = cfg.resource_group
    name = cfg.container_name
    return [
        f"로그 보기: az container logs --resource-group {rg} --name {name}",
        f"상태 확인: az container show --resource-group {rg} --name {name}",
        f"컨테이너 삭제: az container delete --resource-group {rg} --name {name} --yes",
        f"전체 리소스 삭제: az group delete --name {rg} --yes --no-wait",
    ]


def _azure_config_lines(cfg: AzureDeployConfig) -> List[str]:
    lines = [
        f"- resource group: {cfg.resource_group}",
        f"- container: {cfg.container_name}",
        f"- location: {cfg.location}",
        f"- dns label: {cfg.dns_label}",
        f"- build mode: {cfg.build_mode}",
    ]
    if cfg.uses_registry:
        lines.append(f"- acr: {cfg.registry_name}")
    return lines


# -----------------------------
# Azure Container Instances
# -----------------------------
def _publish_azure_image(
    cfg: AzureDeployConfig,
    budget: _Budget,
) -> Tuple[str, Optional[RegistryCredentials]]:
    if not cfg.uses_registry:
        print_status(f"Docker Hub 이미지를 사용합니다: {cfg.image}")
        return cfg.image, None

    registry = ResourceIdentity(cfg.resource_group, cfg.registry_name, cfg.location)
    print_status(f"ACR 준비: {cfg.registry_name}")
    azure_resources.ensure_idempotent_resource(ResourceKind.REGISTRY, registry, timeout=budget.remaining(600.0))
    login_server = azure_resources.registry_login_server(registry, timeout=budget.remaining(120.0))

    image_ref = cfg.registry_image_ref(login_server)
    print_status(f"이미지 빌드/푸시: {image_ref}")
    docker_image.build_and_publish_image(
        image_ref,
        mode=cfg.build_mode,
        context_dir=cfg.context_dir,
        registry_name=cfg.registry_name,
        timeout=budget.remaining(1800.0),
    )
    print_success(f"이미지 푸시 완료: {image_ref}")

    credentials = azure_resources.registry_credentials(registry, login_server, timeout=budget.remaining(120.0))
    return image_ref, credentials


def _recreate_instance(
    cfg: AzureDeployConfig,
    instance: ResourceIdentity,
    image_ref: str,
    credentials: Optional[RegistryCredentials],
    budget: _Budget,
) -> None:
    action = azure_resources.ensure_idempotent_resource(
        ResourceKind.CONTAINER, instance, timeout=budget.remaining(600.0)
    )
    if action == "deleted":
        print_warning(f"컨테이너 {instance.name} 이(가) 이미 존재하여 삭제했습니다.")

    print_status("Azure Container Instances 에 배포 중...")
    azure_resources.create_instance(cfg, image_ref, credentials=credentials, timeout=budget.remaining(900.0))


def _show_logs(cfg: AzureDeployConfig, instance: ResourceIdentity, budget: _Budget, report: PipelineReport) -> None:
    print_status("Recent container logs:")
    try:
        logs = azure_resources.fetch_logs(instance, tail=cfg.logs_tail, timeout=budget.remaining(120.0))
    except (CommandError, DeployError) as e:
        report.warn(f"컨테이너 로그를 가져오지 못했습니다: {e}")
        return
    click.echo(logs.rstrip() or "(로그 없음)")


def run_azure_deploy(
    sources: Sequence[ConfigSource],
    *,
    base_dir: str = ".",
    pipeline_timeout: float = DEFAULT_PIPELINE_TIMEOUT,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PipelineReport:
    """
    Azure Container Instances 배포 파이프라인.

    prerequisites -> config -> resource group -> registry/image -> container 재생성
    -> readiness -> logs -> smoke test 순서로 실행한다.
    컨테이너 생성까지의 실패는 즉시 중단(FAILED), 그 이후 단계의 실패는 경고로만 남긴다.
    """
    report = PipelineReport(variant="azure")
    budget = _Budget(pipeline_timeout, clock)

    result = _step(lambda: prerequisites.ensure_prerequisite_tool("az", timeout=budget.remaining(PREREQUISITE_TIMEOUT)))
    if not result.ok:
        return report.fail("prerequisites", result.error)
    report.advance(Stage.PREREQUISITES_CHECKED)

    result = _step(lambda: resolve_azure_config(sources, base_dir=base_dir))
    if not result.ok:
        return report.fail("configuration", result.error)
    cfg: AzureDeployConfig = result.value
    report.advance(Stage.CONFIG_RESOLVED)

    report.details.extend(_azure_config_lines(cfg))
    print_status("Starting Azure deployment with configuration:")
    for line in _azure_config_lines(cfg):
        click.echo("  " + line[2:])

    if cfg.build_mode == "local_docker":
        result = _step(lambda: prerequisites.ensure_prerequisite_tool(
            "docker", timeout=budget.remaining(PREREQUISITE_TIMEOUT)
        ))
        if not result.ok:
            return report.fail("prerequisites", result.error)

    result = _step(lambda: _ensure_mcpo_config(cfg.config_path, report))
    if not result.ok:
        return report.fail("config_file", result.error)

    group = ResourceIdentity(cfg.resource_group, cfg.resource_group, cfg.location)
    print_status(f"리소스 그룹 준비: {cfg.resource_group}")
    result = _step(lambda: azure_resources.ensure_idempotent_resource(
        ResourceKind.RESOURCE_GROUP, group, timeout=budget.remaining(600.0)
    ))
    if not result.ok:
        return report.fail("resource_group", result.error)
    print_success("리소스 그룹이 생성되었거나 이미 존재합니다.")
    report.advance(Stage.RESOURCE_GROUP_READY)

    result = _step(lambda: _publish_azure_image(cfg, budget))
    if not result.ok:
        return report.fail("image", result.error)
    image_ref, credentials = result.value
    report.details.append(f"- image: {image_ref}")
    report.advance(Stage.IMAGE_PUBLISHED)

    instance = ResourceIdentity(cfg.resource_group, cfg.container_name, cfg.location)
    result = _step(lambda: _recreate_instance(cfg, instance, image_ref, credentials, budget))
    if not result.ok:
        return report.fail("container", result.error)
    print_success("Container deployed successfully")
    report.advance(Stage.INSTANCE_CREATED)

    # 여기부터는 실패해도 중단하지 않는다.
    fqdn = cfg.expected_fqdn
    report.endpoints = _azure_endpoints(fqdn, cfg.port)
    report.next_steps = _azure_next_steps(cfg)

    print_status("Waiting for container to be ready...")
    result = _step(lambda: readiness.await_ready(
        instance,
        timeout=budget.remaining(cfg.ready_timeout),
        initial_delay=cfg.ready_initial_delay,
        sleep=sleep,
        clock=clock,
    ))
    if result.ok:
        status = result.value
        fqdn = status.fqdn or fqdn
        report.endpoints = _azure_endpoints(fqdn, cfg.port)
        report.details.append(f"- container state: {status.state or 'Unknown'}")
        print_status(f"Container State: {status.state or 'Unknown'}")
        if not status.is_running:
            report.warn(
                "컨테이너가 아직 Running 상태가 아닙니다. "
                f"az container show --resource-group {cfg.resource_group} --name {cfg.container_name} 로 확인하세요."
            )
        _show_logs(cfg, instance, budget, report)
    else:
        report.warn(
            f"컨테이너 준비 상태를 확인하지 못했습니다: {result.error} "
            f"(az container show --resource-group {cfg.resource_group} --name {cfg.container_name})"
        )
    report.advance(Stage.READINESS_CHECKED)

    print_status("Testing deployment...")
    docs_url = f"http://{fqdn}:{cfg.port}/docs"
    result = _step(lambda: readiness.smoke_test(docs_url, timeout=budget.remaining(10.0)))
    if not result.ok:
        report.warn(f"배포 테스트를 건너뜁니다: {result.error}")
    elif result.value:
        print_success("Deployment test passed! Server is responding.")
    else:
        report.warn("배포 테스트 실패. 서버가 아직 시작 중일 수 있습니다.")

    report.advance(Stage.DONE)
    print_success("Azure deployment completed successfully!")
    return report


# -----------------------------
# DockerHub 퍼블리시
# -----------------------------
def _publish_dockerhub_image(cfg: DockerHubPublishConfig, budget: _Budget, report: PipelineReport) -> None:
    print_status(f"Building Docker image: {cfg.full_tag}")
    docker_image.build_image(cfg.full_tag, context_dir=cfg.context_dir, timeout=budget.remaining(1800.0))
    print_success(f"Docker image built successfully: {cfg.full_tag}")

    if not cfg.is_latest:
        print_status("Tagging as latest...")
        docker_image.tag_image(cfg.full_tag, cfg.latest_tag, timeout=budget.remaining(120.0))

    print_status("Checking DockerHub authentication...")
    docker_image.ensure_dockerhub_login(cfg.username, timeout=budget.remaining(300.0))

    print_status(f"Pushing image to DockerHub: {cfg.full_tag}")
    docker_image.push_image(cfg.full_tag, timeout=budget.remaining(1800.0))
    print_success(f"Successfully pushed: {cfg.full_tag}")

    if not cfg.is_latest:
        print_status("Pushing latest tag...")
        try:
            docker_image.push_image(cfg.latest_tag, timeout=budget.remaining(1800.0))
        except BuildError as e:
            report.warn(f"latest 태그 푸시 실패 (치명적이지 않음): {e}")
        else:
            print_success(f"Successfully pushed: {cfg.latest_tag}")


def run_dockerhub_publish(
    sources: Sequence[ConfigSource],
    *,
    confirm: Optional[Callable[[str], bool]] = None,
    base_dir: str = ".",
    pipeline_timeout: float = DEFAULT_PIPELINE_TIMEOUT,
    clock: Callable[[], float] = time.monotonic,
) -> PipelineReport:
    """
    DockerHub 퍼블리시 파이프라인.

    prerequisites -> config -> build -> (latest 태그) -> login -> push 순서.
    latest 태그 푸시 실패만 경고로 처리한다.
    """
    report = PipelineReport(variant="dockerhub")
    budget = _Budget(pipeline_timeout, clock)

    result = _step(lambda: prerequisites.ensure_prerequisite_tool("docker", timeout=budget.remaining(PREREQUISITE_TIMEOUT)))
    if not result.ok:
        return report.fail("prerequisites", result.error)
    report.advance(Stage.PREREQUISITES_CHECKED)

    result = _step(lambda: resolve_dockerhub_config(sources, confirm=confirm, base_dir=base_dir))
    if not result.ok:
        return report.fail("configuration", result.error)
    cfg: DockerHubPublishConfig = result.value
    report.advance(Stage.CONFIG_RESOLVED)
    report.details.append(f"- image: {cfg.full_tag}")

    result = _step(lambda: _ensure_mcpo_config(cfg.config_path, report))
    if not result.ok:
        return report.fail("config_file", result.error)

    result = _step(lambda: _publish_dockerhub_image(cfg, budget, report))
    if not result.ok:
        return report.fail("image", result.error)
    report.advance(Stage.IMAGE_PUBLISHED)

    size = docker_image.image_size(cfg.full_tag)
    if size:
        report.details.append(f"- image size: {size}")
        print_status(f"Final image size: {size}")

    report.endpoints = [("DockerHub", cfg.hub_url)]
    report.next_steps = [
        "원격 서버에서 실행: docker run -d --name mcpo-server -p 8000:8000 "
        f"--restart unless-stopped {cfg.full_tag} --config /app/config.json --port 8000",
    ]

    report.advance(Stage.DONE)
    print_success("All done!")
    return report


# -----------------------------
# plan / check
# -----------------------------
def _azure_stages(cfg: AzureDeployConfig) -> List[Tuple[str, bool]]:
    return [
        ("prerequisites", True),
        ("configuration", True),
        ("resource_group", True),
        ("registry", cfg.uses_registry),
        ("build_and_publish", cfg.uses_registry),
        ("container", True),
        ("readiness", True),
        ("logs", True),
        ("smoke_test", True),
    ]


def plan_azure(cfg: AzureDeployConfig) -> str:
    """
    현재 설정과 실행될 단계를 요약한다. 외부 호출은 하지 않는다.
    """
    lines: List[str] = []
    lines.append("# Deploy plan (azure)")
    lines.extend(_azure_config_lines(cfg))
    if cfg.uses_registry:
        lines.append(f"- image: {cfg.registry_name.lower()}.azurecr.io/{IMAGE_REPOSITORY}:{cfg.image_tag} (예상)")
    else:
        lines.append(f"- image: {cfg.image}")
    lines.append(f"- tavily_api_key: {'(set)' if cfg.tavily_api_key else '(not set)'}")
    lines.append(f"- cpu/memory: {cfg.cpu:g} / {cfg.memory_gb:g}GB")
    lines.append(f"- ready timeout: {cfg.ready_timeout:g}s (initial delay {cfg.ready_initial_delay:g}s)")
    lines.append("")

    lines.append("## Stages")
    for name, enabled in _azure_stages(cfg):
        status = "ENABLED" if enabled else "SKIPPED"
        lines.append(f"- {name}: {status}")
    lines.append("")

    lines.append("## Expected endpoints")
    for label, url in _azure_endpoints(cfg.expected_fqdn, cfg.port):
        lines.append(f"- {label}: {url}")

    return "\n".join(lines)


def check_all(base_dir: str = ".") -> tuple[str, bool]:
    """
    배포 전에 도구/설정 상태를 점검한다. (리소스 생성/변경 없음)

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 크리티컬 이슈나 경고가 있는지 여부
    """
    lines: List[str] = []
    critical: List[str] = []
    warnings: List[str] = []

    lines.append("# Deploy pre-check")
    lines.append(f"- base dir: {os.path.abspath(base_dir)}")
    lines.append("")

    lines.append("## Tools")
    for tool in ("az", "docker"):
        ok, status = prerequisites.check_tool(tool)
        lines.append(f"- {status}")
        if ok:
            continue
        # docker 는 dockerhub / local_docker 빌드에서만 필요
        if tool == "az":
            critical.append(status)
        else:
            warnings.append(status)
    lines.append("")

    lines.append("## MCPO config")
    path = os.path.join(base_dir, "config.json")
    if not os.path.exists(path):
        status = "config.json 없음 (배포 시 템플릿이 생성됨)"
        warnings.append(status)
    elif mcpo_config.contains_placeholder_secret(path):
        status = f"config.json 에 placeholder 값이 있습니다 ({mcpo_config.PLACEHOLDER_SECRET})"
        warnings.append(status)
    else:
        status = "config.json 존재함"
    lines.append(f"- {status}")
    lines.append("")

    lines.append("## Secrets")
    if os.getenv("TAVILY_API_KEY"):
        lines.append("- TAVILY_API_KEY: 설정됨")
    else:
        status = "TAVILY_API_KEY: 설정되지 않음 (azure 배포 시 입력이 필요함)"
        lines.append(f"- {status}")
        warnings.append(status)
    lines.append("")

    lines.append("## Summary")
    if critical:
        lines.append("- 상태: 크리티컬 이슈가 있습니다. 배포 전 반드시 해결해야 합니다.")
    elif warnings:
        lines.append("- 상태: 경고만 있습니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음 (배포 가능 상태로 보입니다)")

    if critical:
        lines.append("")
        lines.append("### Critical issues")
        for i in critical:
            lines.append(f"- {i}")

    if warnings:
        lines.append("")
        lines.append("### Warnings")
        for i in warnings:
            lines.append(f"- {i}")

    summary = "\n".join(lines)
    return summary, bool(critical or warnings)
