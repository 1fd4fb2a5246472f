import sys
from typing import Optional

import click

from . import azure_resources
from .azure_resources import ResourceIdentity
from .config import (
    BUILD_MODES,
    azure_sources,
    dockerhub_sources,
    load_env_files,
    resolve_azure_config,
)
from .errors import CommandError, DeployError
from .logging_utils import get_logger, print_success, setup_logging
from .mcpo_config import ensure_config_file
from .orchestrator import (
    DEFAULT_PIPELINE_TIMEOUT,
    check_all,
    plan_azure,
    run_azure_deploy,
    run_dockerhub_publish,
)


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리). config.json, .env 파일, 빌드 컨텍스트 기준",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다.",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """MCPO 컨테이너 DockerHub 퍼블리시 / Azure Container Instances 배포용 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose
    load_env_files(chdir)


def _azure_arguments(
    resource_group: Optional[str],
    acr_name: Optional[str],
    container_name: Optional[str],
    location: Optional[str],
    dns_label: Optional[str],
    **extra: Optional[str],
) -> dict:
    args = {
        "resource_group": resource_group,
        "registry_name": acr_name,
        "container_name": container_name,
        "location": location,
        "dns_label": dns_label,
    }
    args.update(extra)
    return args


def _finish(report) -> None:  # noqa: ANN001
    click.echo("")
    click.echo(report.summary())
    if not report.succeeded:
        sys.exit(1)


@main.command()
@click.argument("resource_group", required=False)
@click.argument("acr_name", required=False)
@click.argument("container_name", required=False)
@click.argument("location", required=False)
@click.argument("dns_label", required=False)
@click.option(
    "--build-mode",
    type=click.Choice(BUILD_MODES),
    default=None,
    help="prebuilt: 기존 이미지 사용(기본) / local_docker: 로컬 빌드 후 ACR 푸시 / acr_build: az acr build",
)
@click.option("--image", default=None, help="prebuilt 모드에서 사용할 이미지 (기본: MCPO_IMAGE 또는 sixtyoneeightyjake/mcpo:latest)")
@click.option("--tag", default=None, help="ACR 빌드 시 이미지 태그 (기본: latest)")
@click.option("--no-input", is_flag=True, help="프롬프트 없이 실행합니다. 값이 없으면 실패합니다.")
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_PIPELINE_TIMEOUT,
    show_default=True,
    help="전체 파이프라인 제한 시간(초)",
)
@click.pass_context
def azure(
    ctx: click.Context,
    resource_group: Optional[str],
    acr_name: Optional[str],
    container_name: Optional[str],
    location: Optional[str],
    dns_label: Optional[str],
    build_mode: Optional[str],
    image: Optional[str],
    tag: Optional[str],
    no_input: bool,
    timeout: float,
) -> None:
    """MCPO 를 Azure Container Instances 에 배포 (기존 컨테이너는 삭제 후 재생성)"""
    base_dir: str = ctx.obj["chdir"]
    arguments = _azure_arguments(
        resource_group, acr_name, container_name, location, dns_label,
        build_mode=build_mode, image=image, image_tag=tag,
    )
    sources = azure_sources(arguments, interactive=not no_input)

    try:
        report = run_azure_deploy(sources, base_dir=base_dir, pipeline_timeout=timeout)
    except Exception as e:  # noqa: BLE001
        logger.exception("배포 중 오류 발생")
        click.echo(f"[ERROR] 배포 실패: {e}", err=True)
        sys.exit(1)

    _finish(report)


@main.command()
@click.argument("username", required=False)
@click.argument("version_tag", required=False)
@click.option("--no-input", is_flag=True, help="프롬프트 없이 실행합니다.")
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="TAVILY_API_KEY 가 없어도 확인 없이 계속합니다.")
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_PIPELINE_TIMEOUT,
    show_default=True,
    help="전체 파이프라인 제한 시간(초)",
)
@click.pass_context
def dockerhub(
    ctx: click.Context,
    username: Optional[str],
    version_tag: Optional[str],
    no_input: bool,
    assume_yes: bool,
    timeout: float,
) -> None:
    """MCPO 이미지를 빌드하여 DockerHub 에 푸시"""
    base_dir: str = ctx.obj["chdir"]
    sources = dockerhub_sources(
        {"username": username, "version_tag": version_tag},
        interactive=not no_input,
    )

    if assume_yes:
        confirm = lambda _text: True  # noqa: E731
    elif no_input:
        confirm = None
    else:
        confirm = lambda text: click.confirm(text, default=False)  # noqa: E731

    try:
        report = run_dockerhub_publish(sources, confirm=confirm, base_dir=base_dir, pipeline_timeout=timeout)
    except Exception as e:  # noqa: BLE001
        logger.exception("퍼블리시 중 오류 발생")
        click.echo(f"[ERROR] 퍼블리시 실패: {e}", err=True)
        sys.exit(1)

    _finish(report)


@main.command()
@click.argument("resource_group", required=False)
@click.argument("acr_name", required=False)
@click.argument("container_name", required=False)
@click.argument("location", required=False)
@click.argument("dns_label", required=False)
@click.option("--build-mode", type=click.Choice(BUILD_MODES), default=None)
@click.option("--image", default=None)
@click.option("--tag", default=None)
@click.pass_context
def plan(
    ctx: click.Context,
    resource_group: Optional[str],
    acr_name: Optional[str],
    container_name: Optional[str],
    location: Optional[str],
    dns_label: Optional[str],
    build_mode: Optional[str],
    image: Optional[str],
    tag: Optional[str],
) -> None:
    """Azure 배포 설정과 실행될 단계를 출력 (외부 호출/프롬프트 없음)"""
    arguments = _azure_arguments(
        resource_group, acr_name, container_name, location, dns_label,
        build_mode=build_mode, image=image, image_tag=tag,
    )
    try:
        cfg = resolve_azure_config(
            azure_sources(arguments, interactive=False),
            base_dir=ctx.obj["chdir"],
            require_secret=False,
        )
    except DeployError as e:
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    click.echo(plan_azure(cfg))


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """
    배포 전에 az/docker 사용 가능 여부와 config.json, 시크릿 설정을 점검한다.
    (리소스 생성/변경은 하지 않는다)
    """
    base_dir: str = ctx.obj["chdir"]

    try:
        report, has_issues = check_all(base_dir=base_dir)
    except Exception as e:  # noqa: BLE001
        logger.exception("사전 체크 중 오류 발생")
        click.echo(f"[ERROR] 체크 실패: {e}", err=True)
        sys.exit(1)

    click.echo(report)

    # 이슈가 있으면 exit 1 로 종료하여 CI 등에서 감지 가능하게 한다.
    if has_issues:
        sys.exit(1)


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """
    현재 디렉토리에 config.json 템플릿과 env.deploy.example 을 생성한다.
    """
    import os
    from importlib import resources

    base_dir: str = ctx.obj["chdir"]

    if ensure_config_file(os.path.join(base_dir, "config.json")):
        click.echo("config.json 템플릿을 생성했습니다.")
    else:
        click.echo("config.json 이(가) 이미 존재하여 건너뜀")

    name = "env.deploy.example"
    target = os.path.join(base_dir, name)
    if os.path.exists(target):
        click.echo(f"{name} 이(가) 이미 존재하여 건너뜀")
        return
    try:
        with resources.files("mcpo_deploy.examples").joinpath(name).open("r", encoding="utf-8") as src, open(
            target, "w", encoding="utf-8"
        ) as dst:
            dst.write(src.read())
        click.echo(f"{name} 템플릿을 생성했습니다.")
    except FileNotFoundError:
        click.echo(f"템플릿 {name} 을(를) 패키지에서 찾을 수 없습니다.", err=True)


@main.command()
@click.argument("resource_group", required=False)
@click.argument("container_name", required=False)
@click.option("--tail", type=int, default=None, help="마지막 N 줄만 출력 (기본: MCPO_LOGS_TAIL 또는 20)")
@click.pass_context
def logs(ctx: click.Context, resource_group: Optional[str], container_name: Optional[str], tail: Optional[int]) -> None:
    """배포된 컨테이너의 최근 로그 출력"""
    arguments = _azure_arguments(resource_group, None, container_name, None, None)
    try:
        cfg = resolve_azure_config(
            azure_sources(arguments, interactive=False),
            base_dir=ctx.obj["chdir"],
            require_secret=False,
        )
        output = azure_resources.fetch_logs(
            ResourceIdentity(cfg.resource_group, cfg.container_name),
            tail=tail if tail is not None else cfg.logs_tail,
        )
    except (DeployError, CommandError) as e:
        click.echo(f"[ERROR] 로그 조회 실패: {e}", err=True)
        sys.exit(1)

    click.echo(output.rstrip())


@main.command()
@click.argument("resource_group", required=False)
@click.argument("container_name", required=False)
@click.option("--group", "whole_group", is_flag=True, help="컨테이너가 아니라 리소스 그룹 전체를 삭제합니다.")
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="확인 없이 삭제합니다.")
@click.pass_context
def destroy(
    ctx: click.Context,
    resource_group: Optional[str],
    container_name: Optional[str],
    whole_group: bool,
    assume_yes: bool,
) -> None:
    """배포된 컨테이너(또는 --group 으로 리소스 그룹 전체) 삭제"""
    arguments = _azure_arguments(resource_group, None, container_name, None, None)
    try:
        cfg = resolve_azure_config(
            azure_sources(arguments, interactive=False),
            base_dir=ctx.obj["chdir"],
            require_secret=False,
        )
    except DeployError as e:
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    target = f"리소스 그룹 {cfg.resource_group}" if whole_group else f"컨테이너 {cfg.container_name}"
    if not assume_yes and not click.confirm(f"{target} 을(를) 삭제할까요?", default=False):
        click.echo("취소했습니다.")
        return

    try:
        if whole_group:
            azure_resources.delete_resource_group(cfg.resource_group)
        else:
            azure_resources.delete_container(ResourceIdentity(cfg.resource_group, cfg.container_name))
    except DeployError as e:
        click.echo(f"[ERROR] 삭제 실패: {e}", err=True)
        sys.exit(1)

    print_success(f"{target} 삭제를 요청했습니다.")
