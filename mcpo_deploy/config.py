from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

import click
from dotenv import load_dotenv

from .errors import ConfigurationError
from .logging_utils import get_logger, print_warning


logger = get_logger(__name__)


ENV_FILES_DEFAULT_ORDER = [".env", ".env.deploy"]

MCPO_PORT = 8000
IMAGE_REPOSITORY = "mcpo"
DEFAULT_IMAGE = "sixtyoneeightyjake/mcpo:latest"
BUILD_MODES = ("prebuilt", "local_docker", "acr_build")

AZURE_DEFAULTS: Dict[str, str] = {
    "resource_group": "mcpo-rg",
    "registry_name": "mcpoacr",
    "container_name": "mcpo-container",
    "location": "eastus",
    "dns_label": "mcpo-app",
    "image": DEFAULT_IMAGE,
    "build_mode": "prebuilt",
    "image_tag": "latest",
    "cpu": "1",
    "memory_gb": "2",
    "ready_timeout": "180",
    "ready_initial_delay": "10",
    "logs_tail": "20",
}

AZURE_ENV_NAMES: Dict[str, str] = {
    "resource_group": "AZURE_RESOURCE_GROUP",
    "registry_name": "AZURE_ACR_NAME",
    "container_name": "AZURE_CONTAINER_NAME",
    "location": "AZURE_LOCATION",
    "dns_label": "AZURE_DNS_LABEL",
    "tavily_api_key": "TAVILY_API_KEY",
    "image": "MCPO_IMAGE",
    "build_mode": "MCPO_BUILD_MODE",
    "image_tag": "MCPO_IMAGE_TAG",
    "cpu": "MCPO_CPU",
    "memory_gb": "MCPO_MEMORY_GB",
    "ready_timeout": "MCPO_READY_TIMEOUT",
    "ready_initial_delay": "MCPO_READY_INITIAL_DELAY",
    "logs_tail": "MCPO_LOGS_TAIL",
}

DOCKERHUB_DEFAULTS: Dict[str, str] = {
    "version_tag": "latest",
}

DOCKERHUB_ENV_NAMES: Dict[str, str] = {
    "username": "DOCKERHUB_USERNAME",
    "version_tag": "MCPO_VERSION_TAG",
    "tavily_api_key": "TAVILY_API_KEY",
}


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


# -----------------------------
# 설정값 소스 (인자 > env > 프롬프트 > 기본값)
# -----------------------------
@dataclass(frozen=True)
class Found:
    key: str
    value: str
    source: str


@dataclass(frozen=True)
class Missing:
    key: str


Lookup = Union[Found, Missing]


class ConfigSource:
    name = "source"

    def lookup(self, key: str) -> Lookup:
        raise NotImplementedError


class ArgumentSource(ConfigSource):
    name = "argument"

    def __init__(self, values: Mapping[str, Optional[str]]) -> None:
        self._values = dict(values)

    def lookup(self, key: str) -> Lookup:
        value = self._values.get(key)
        if value:
            return Found(key, value, self.name)
        return Missing(key)


class EnvironmentSource(ConfigSource):
    name = "env"

    def __init__(self, names: Mapping[str, str],
                 environ: Optional[Mapping[str, str]] = None) -> None:
        self._names = dict(names)
        self._environ = environ

    def lookup(self, key: str) -> Lookup:
        env_name = self._names.get(key)
        if env_name is None:
            return Missing(key)
        environ = os.environ if self._environ is None else self._environ
        value = (environ.get(env_name) or "").strip()
        if value:
            return Found(key, value, f"{self.name}:{env_name}")
        return Missing(key)


@dataclass(frozen=True)
class PromptSpec:
    text: str
    hide_input: bool = False
    default: Optional[str] = None


class PromptSource(ConfigSource):
    """
    등록된 키에 대해서만 사용자에게 입력을 받는다.
    빈 입력은 Missing 으로 취급하여 다음 소스(기본값)로 넘어간다.
    """

    name = "prompt"

    def __init__(self, prompts: Mapping[str, PromptSpec],
                 prompt_fn: Callable[..., str] = click.prompt) -> None:
        self._prompts = dict(prompts)
        self._prompt_fn = prompt_fn

    def lookup(self, key: str) -> Lookup:
        prompt = self._prompts.get(key)
        if prompt is None:
            return Missing(key)
        answer = self._prompt_fn(
            prompt.text,
            default=prompt.default or "",
            show_default=bool(prompt.default),
            hide_input=prompt.hide_input,
        )
        answer = (answer or "").strip()
        if answer:
            return Found(key, answer, self.name)
        return Missing(key)


class DefaultSource(ConfigSource):
    name = "default"

    def __init__(self, defaults: Mapping[str, str]) -> None:
        self._defaults = dict(defaults)

    def lookup(self, key: str) -> Lookup:
        value = self._defaults.get(key)
        if value:
            return Found(key, value, self.name)
        return Missing(key)


def resolve_value(key: str, sources: Sequence[ConfigSource]) -> Lookup:
    for source in sources:
        result = source.lookup(key)
        if isinstance(result, Found):
            logger.debug("설정값 확인: %s (source=%s)", key, result.source)
            return result
    return Missing(key)


def _require(key: str, sources: Sequence[ConfigSource], label: str) -> str:
    result = resolve_value(key, sources)
    if isinstance(result, Missing):
        raise ConfigurationError(f"{label} 값이 필요합니다 (key={key})")
    return result.value


def _optional(key: str, sources: Sequence[ConfigSource]) -> Optional[str]:
    result = resolve_value(key, sources)
    if isinstance(result, Found):
        return result.value
    return None


def _get_float(key: str, sources: Sequence[ConfigSource]) -> float:
    raw = _require(key, sources, key)
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} 는 숫자여야 합니다: {raw!r}") from e
    if value < 0:
        raise ConfigurationError(f"{key} 는 0 이상이어야 합니다: {raw!r}")
    return value


def _get_int(key: str, sources: Sequence[ConfigSource]) -> int:
    raw = _require(key, sources, key)
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} 는 정수여야 합니다: {raw!r}") from e


# -----------------------------
# Azure Container Instances
# -----------------------------
AZURE_PROMPTS: Dict[str, PromptSpec] = {
    "tavily_api_key": PromptSpec("Enter your Tavily API key", hide_input=True),
}


@dataclass(frozen=True)
class AzureDeployConfig:
    resource_group: str
    registry_name: str
    container_name: str
    location: str
    dns_label: str
    tavily_api_key: str = field(repr=False)

    image: str = DEFAULT_IMAGE
    build_mode: str = "prebuilt"
    image_tag: str = "latest"
    context_dir: str = "."
    config_path: str = "config.json"

    port: int = MCPO_PORT
    cpu: float = 1.0
    memory_gb: float = 2.0

    ready_timeout: float = 180.0
    ready_initial_delay: float = 10.0
    logs_tail: int = 20

    @property
    def uses_registry(self) -> bool:
        return self.build_mode != "prebuilt"

    @property
    def expected_fqdn(self) -> str:
        return f"{self.dns_label}.{self.location}.azurecontainer.io"

    def registry_image_ref(self, login_server: str) -> str:
        return f"{login_server}/{IMAGE_REPOSITORY}:{self.image_tag}"


def azure_sources(
    arguments: Mapping[str, Optional[str]],
    *,
    interactive: bool = True,
    environ: Optional[Mapping[str, str]] = None,
    prompt_fn: Callable[..., str] = click.prompt,
) -> List[ConfigSource]:
    sources: List[ConfigSource] = [
        ArgumentSource(arguments),
        EnvironmentSource(AZURE_ENV_NAMES, environ),
    ]
    if interactive:
        sources.append(PromptSource(AZURE_PROMPTS, prompt_fn))
    sources.append(DefaultSource(AZURE_DEFAULTS))
    return sources


def resolve_azure_config(
    sources: Sequence[ConfigSource],
    *,
    base_dir: str = ".",
    require_secret: bool = True,
) -> AzureDeployConfig:
    """
    Azure 배포 설정을 한 번에 확정한다.

    리소스 이름들은 항상 기본값이 있으므로 실패하지 않고,
    Tavily API 키가 어느 소스에서도 나오지 않으면 ConfigurationError 를 던진다.
    (plan 처럼 외부 호출이 없는 경우 require_secret=False 로 검사를 생략할 수 있다)
    """
    resource_group = _require("resource_group", sources, "리소스 그룹 이름")
    registry_name = _require("registry_name", sources, "ACR 이름")
    container_name = _require("container_name", sources, "컨테이너 이름")
    location = _require("location", sources, "리전")
    dns_label = _require("dns_label", sources, "DNS 레이블")

    build_mode = _require("build_mode", sources, "빌드 모드").lower()
    if build_mode not in BUILD_MODES:
        raise ConfigurationError(
            f"알 수 없는 MCPO_BUILD_MODE 값입니다: {build_mode!r} ({' | '.join(BUILD_MODES)} 중 하나)"
        )

    if require_secret:
        tavily_api_key = _require("tavily_api_key", sources, "Tavily API key")
    else:
        tavily_api_key = _optional("tavily_api_key", sources) or ""

    return AzureDeployConfig(
        resource_group=resource_group,
        registry_name=registry_name,
        container_name=container_name,
        location=location,
        dns_label=dns_label,
        tavily_api_key=tavily_api_key,
        image=_require("image", sources, "이미지"),
        build_mode=build_mode,
        image_tag=_require("image_tag", sources, "이미지 태그"),
        context_dir=base_dir,
        config_path=os.path.join(base_dir, "config.json"),
        cpu=_get_float("cpu", sources),
        memory_gb=_get_float("memory_gb", sources),
        ready_timeout=_get_float("ready_timeout", sources),
        ready_initial_delay=_get_float("ready_initial_delay", sources),
        logs_tail=_get_int("logs_tail", sources),
    )


# -----------------------------
# DockerHub 퍼블리시
# -----------------------------
DOCKERHUB_PROMPTS: Dict[str, PromptSpec] = {
    "username": PromptSpec("Enter your DockerHub username"),
    "version_tag": PromptSpec(
        "Enter version tag (optional, press Enter for 'latest')",
        default="latest",
    ),
}


@dataclass(frozen=True)
class DockerHubPublishConfig:
    username: str
    version_tag: str = "latest"
    repository: str = IMAGE_REPOSITORY
    context_dir: str = "."
    config_path: str = "config.json"
    tavily_api_key: Optional[str] = field(default=None, repr=False)

    @property
    def image_name(self) -> str:
        return f"{self.username}/{self.repository}"

    @property
    def full_tag(self) -> str:
        return f"{self.image_name}:{self.version_tag}"

    @property
    def latest_tag(self) -> str:
        return f"{self.image_name}:latest"

    @property
    def is_latest(self) -> bool:
        return self.version_tag == "latest"

    @property
    def hub_url(self) -> str:
        return f"https://hub.docker.com/r/{self.username}/{self.repository}"


def dockerhub_sources(
    arguments: Mapping[str, Optional[str]],
    *,
    interactive: bool = True,
    environ: Optional[Mapping[str, str]] = None,
    prompt_fn: Callable[..., str] = click.prompt,
) -> List[ConfigSource]:
    sources: List[ConfigSource] = [
        ArgumentSource(arguments),
        EnvironmentSource(DOCKERHUB_ENV_NAMES, environ),
    ]
    if interactive:
        sources.append(PromptSource(DOCKERHUB_PROMPTS, prompt_fn))
    sources.append(DefaultSource(DOCKERHUB_DEFAULTS))
    return sources


def resolve_dockerhub_config(
    sources: Sequence[ConfigSource],
    *,
    confirm: Optional[Callable[[str], bool]] = None,
    base_dir: str = ".",
) -> DockerHubPublishConfig:
    """
    DockerHub 퍼블리시 설정을 확정한다.

    TAVILY_API_KEY 는 이미지 빌드에는 필요 없지만, 없으면 사용자에게 계속할지 묻는다.
    confirm 이 None 이면(비대화형) 거절한 것으로 본다.
    """
    username = _require("username", sources, "DockerHub username")
    version_tag = _require("version_tag", sources, "버전 태그")
    tavily_api_key = _optional("tavily_api_key", sources)

    if not tavily_api_key:
        print_warning("TAVILY_API_KEY 환경변수가 설정되지 않았습니다.")
        click.echo("컨테이너 실행 시 Tavily API key 를 따로 넘겨야 합니다.")
        click.echo("설정 방법: export TAVILY_API_KEY='your-actual-api-key'")
        if confirm is None or not confirm("Continue anyway?"):
            raise ConfigurationError(
                "TAVILY_API_KEY 환경변수를 설정한 뒤 다시 시도하세요."
            )

    return DockerHubPublishConfig(
        username=username,
        version_tag=version_tag,
        context_dir=base_dir,
        config_path=os.path.join(base_dir, "config.json"),
        tavily_api_key=tavily_api_key,
    )
