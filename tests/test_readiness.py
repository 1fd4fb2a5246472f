import httpx
import pytest
import respx

from mcpo_deploy import readiness
from mcpo_deploy.azure_resources import ResourceIdentity
from mcpo_deploy.errors import CommandTimeoutError, ReadinessError


INSTANCE = ResourceIdentity("mcpo-rg", "mcpo-container", "eastus")


def _status_sequence(fake_cli, states):
    """
    show 호출마다 (fqdn, state) 를 순서대로 돌려준다. 마지막 값은 계속 반복.
    """
    remaining = list(states)

    def handler(cmd):
        fqdn, state = remaining[0]
        if "instanceView.state" in cmd:
            if len(remaining) > 1:
                remaining.pop(0)
            return 0, f"{state or ''}\n"
        return 0, f"{fqdn or ''}\n"

    fake_cli.on("az", "container", "show", handler=handler)


def test_returns_when_running(fake_cli, fake_clock) -> None:
    _status_sequence(fake_cli, [
        (None, "Pending"),
        ("mcpo-app.eastus.azurecontainer.io", "Running"),
    ])

    status = readiness.await_ready(
        INSTANCE, timeout=60, initial_delay=10, interval=5, sleep=fake_clock.sleep, clock=fake_clock
    )

    assert status.fqdn == "mcpo-app.eastus.azurecontainer.io"
    assert status.is_running
    assert fake_clock.sleeps == [10, 5]


def test_backoff_is_capped(fake_cli, fake_clock) -> None:
    _status_sequence(fake_cli, [(None, "Pending")])

    with pytest.raises(ReadinessError):
        readiness.await_ready(
            INSTANCE,
            timeout=100,
            initial_delay=0,
            interval=4,
            max_interval=9,
            backoff=2,
            sleep=fake_clock.sleep,
            clock=fake_clock,
        )

    assert fake_clock.sleeps[:4] == [4, 8, 9, 9]
    assert fake_clock.now <= 100


def test_no_fqdn_raises_readiness_error(fake_cli, fake_clock) -> None:
    fake_cli.on("az", "container", "show", returncode=1)

    with pytest.raises(ReadinessError):
        readiness.await_ready(INSTANCE, timeout=30, initial_delay=5, sleep=fake_clock.sleep, clock=fake_clock)


def test_fqdn_without_running_state_is_returned_at_timeout(fake_cli, fake_clock) -> None:
    _status_sequence(fake_cli, [("mcpo-app.eastus.azurecontainer.io", "Waiting")])

    status = readiness.await_ready(INSTANCE, timeout=20, initial_delay=0, sleep=fake_clock.sleep, clock=fake_clock)

    assert status.fqdn == "mcpo-app.eastus.azurecontainer.io"
    assert not status.is_running


def test_status_query_is_bounded_by_remaining_time(monkeypatch: pytest.MonkeyPatch, fake_clock) -> None:
    timeouts = []

    def hanging_show(identity, *, timeout):  # noqa: ARG001
        timeouts.append(timeout)
        fake_clock.now += timeout
        raise CommandTimeoutError("az container show 시간 초과", cmd=["az", "container", "show"])

    monkeypatch.setattr(readiness.azure_resources, "show_instance_status", hanging_show)

    with pytest.raises(ReadinessError):
        readiness.await_ready(INSTANCE, timeout=10, initial_delay=0, sleep=fake_clock.sleep, clock=fake_clock)

    assert timeouts == [10]
    assert fake_clock.now == 10


@respx.mock
def test_smoke_test_passes_on_200() -> None:
    respx.get("http://mcpo-app.eastus.azurecontainer.io:8000/docs").mock(
        return_value=httpx.Response(200, text="<html>Swagger UI</html>")
    )

    assert readiness.smoke_test("http://mcpo-app.eastus.azurecontainer.io:8000/docs")


@respx.mock
def test_smoke_test_fails_on_502() -> None:
    respx.get("http://mcpo-app.eastus.azurecontainer.io:8000/docs").mock(return_value=httpx.Response(502))

    assert not readiness.smoke_test("http://mcpo-app.eastus.azurecontainer.io:8000/docs")


@respx.mock
def test_smoke_test_fails_on_connection_error() -> None:
    respx.get("http://mcpo-app.eastus.azurecontainer.io:8000/docs").mock(
        side_effect=httpx.ConnectError("connection refused")
    )

    assert not readiness.smoke_test("http://mcpo-app.eastus.azurecontainer.io:8000/docs")
