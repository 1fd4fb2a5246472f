import logging
import subprocess

import pytest

from mcpo_deploy import azure_resources as ar
from mcpo_deploy.azure_resources import ResourceIdentity, ResourceKind
from mcpo_deploy.config import AzureDeployConfig
from mcpo_deploy.errors import CommandTimeoutError, DeploymentError


def _cfg(**overrides) -> AzureDeployConfig:
    values = dict(
        resource_group="mcpo-rg",
        registry_name="mcpoacr",
        container_name="mcpo-container",
        location="eastus",
        dns_label="mcpo-app",
        tavily_api_key="tvly-secret",
    )
    values.update(overrides)
    return AzureDeployConfig(**values)


CONTAINER = ResourceIdentity("mcpo-rg", "mcpo-container", "eastus")


def test_resource_group_created_unconditionally(fake_cli) -> None:
    action = ar.ensure_idempotent_resource(
        ResourceKind.RESOURCE_GROUP, ResourceIdentity("mcpo-rg", "mcpo-rg", "eastus")
    )

    assert action == "created"
    assert fake_cli.calls == [
        ["az", "group", "create", "--name", "mcpo-rg", "--location", "eastus", "--output", "none"]
    ]


def test_resource_group_failure_raises_deployment_error(fake_cli) -> None:
    fake_cli.on("az", "group", "create", returncode=1, stdout="AuthorizationFailed")

    with pytest.raises(DeploymentError):
        ar.ensure_idempotent_resource(ResourceKind.RESOURCE_GROUP, ResourceIdentity("mcpo-rg", "mcpo-rg", "eastus"))


def test_existing_registry_is_reused(fake_cli) -> None:
    fake_cli.on("az", "acr", "show", stdout="/subscriptions/x/registries/mcpoacr\n")

    action = ar.ensure_idempotent_resource(ResourceKind.REGISTRY, ResourceIdentity("mcpo-rg", "mcpoacr", "eastus"))

    assert action == "existing"
    assert fake_cli.commands("az", "acr", "create") == []


def test_missing_registry_is_created_with_admin(fake_cli) -> None:
    fake_cli.on("az", "acr", "show", returncode=3)

    action = ar.ensure_idempotent_resource(ResourceKind.REGISTRY, ResourceIdentity("mcpo-rg", "mcpoacr", "eastus"))

    assert action == "created"
    create = fake_cli.commands("az", "acr", "create")[0]
    assert "--admin-enabled" in create
    assert create[create.index("--sku") + 1] == "Basic"


def test_existing_container_is_deleted_before_recreate(fake_cli) -> None:
    fake_cli.on("az", "container", "show", stdout="/subscriptions/x/containerGroups/mcpo-container\n")

    action = ar.ensure_idempotent_resource(ResourceKind.CONTAINER, CONTAINER)

    assert action == "deleted"
    delete = fake_cli.commands("az", "container", "delete")
    assert len(delete) == 1
    assert "--yes" in delete[0]


def test_absent_container_is_left_alone(fake_cli) -> None:
    fake_cli.on("az", "container", "show", returncode=3)

    action = ar.ensure_idempotent_resource(ResourceKind.CONTAINER, CONTAINER)

    assert action == "absent"
    assert fake_cli.commands("az", "container", "delete") == []


def test_create_command_uses_secure_env_and_fixed_port() -> None:
    cmd = ar.build_create_command(_cfg(cpu=1.0, memory_gb=2.0), "sixtyoneeightyjake/mcpo:latest")

    assert cmd[:3] == ["az", "container", "create"]
    assert cmd[cmd.index("--ports") + 1] == "8000"
    assert cmd[cmd.index("--secure-environment-variables") + 1] == "TAVILY_API_KEY=tvly-secret"
    assert cmd[cmd.index("--command-line") + 1] == "mcpo --config /app/config.json --port 8000"
    assert cmd[cmd.index("--cpu") + 1] == "1"
    assert cmd[cmd.index("--memory") + 1] == "2"
    assert "--registry-login-server" not in cmd


def test_create_command_with_registry_credentials() -> None:
    creds = ar.RegistryCredentials("mcpoacr.azurecr.io", "mcpoacr", "pa55")

    cmd = ar.build_create_command(_cfg(memory_gb=1.5), "mcpoacr.azurecr.io/mcpo:latest", creds)

    assert cmd[cmd.index("--registry-login-server") + 1] == "mcpoacr.azurecr.io"
    assert cmd[cmd.index("--registry-password") + 1] == "pa55"
    assert cmd[cmd.index("--memory") + 1] == "1.5"


def test_create_instance_failure_raises_deployment_error(fake_cli) -> None:
    fake_cli.on("az", "container", "create", returncode=1, stdout="DnsNameLabelAlreadyInUse")

    with pytest.raises(DeploymentError) as excinfo:
        ar.create_instance(_cfg(), "sixtyoneeightyjake/mcpo:latest")

    assert "mcpo-container" in str(excinfo.value)


def test_show_instance_status_parses_tsv(fake_cli) -> None:
    fake_cli.on("az", "container", "show", handler=lambda cmd: (
        0,
        "mcpo-app.eastus.azurecontainer.io\n" if "ipAddress.fqdn" in cmd else "Running\n",
    ))

    status = ar.show_instance_status(CONTAINER)

    assert status.fqdn == "mcpo-app.eastus.azurecontainer.io"
    assert status.is_running


def test_show_instance_status_empty_fqdn(fake_cli) -> None:
    fake_cli.on("az", "container", "show", handler=lambda cmd: (0, "\n" if "ipAddress.fqdn" in cmd else "Pending\n"))

    status = ar.show_instance_status(CONTAINER)

    assert status.fqdn is None
    assert not status.is_running


def test_registry_credentials(fake_cli) -> None:
    fake_cli.on("az", "acr", "credential", "show", handler=lambda cmd: (
        0,
        "mcpoacr\n" if cmd[-3] == "username" else "s3cr3t\n",
    ))

    creds = ar.registry_credentials(ResourceIdentity("mcpo-rg", "mcpoacr"), "mcpoacr.azurecr.io")

    assert creds == ar.RegistryCredentials("mcpoacr.azurecr.io", "mcpoacr", "s3cr3t")


def test_registry_password_is_not_logged(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    def fake_run(cmd, **kwargs):  # noqa: ARG001
        stdout = "s3cr3t-pw\n" if "passwords[0].value" in cmd else "mcpoacr\n"
        return subprocess.CompletedProcess(cmd, 0, stdout=stdout, stderr="")

    monkeypatch.setattr("mcpo_deploy.subprocess_utils.subprocess.run", fake_run)
    caplog.set_level(logging.DEBUG)

    creds = ar.registry_credentials(ResourceIdentity("mcpo-rg", "mcpoacr"), "mcpoacr.azurecr.io")

    assert creds.password == "s3cr3t-pw"
    assert "s3cr3t-pw" not in caplog.text
    assert "mcpoacr" in caplog.text


def test_container_lookup_timeout_is_not_treated_as_absent(fake_cli) -> None:
    def hang(cmd):
        raise CommandTimeoutError("명령 실행이 120.0초 안에 끝나지 않았습니다", cmd=cmd)

    fake_cli.on("az", "container", "show", handler=hang)

    with pytest.raises(DeploymentError):
        ar.ensure_idempotent_resource(ResourceKind.CONTAINER, CONTAINER)

    assert fake_cli.mutating_calls() == []
