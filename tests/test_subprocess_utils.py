from __future__ import annotations

import io
import sys

import pytest

from mcpo_deploy.errors import CommandError, CommandNotFoundError, CommandTimeoutError
from mcpo_deploy.subprocess_utils import format_command, run_command


def test_capture_returns_stdout() -> None:
    result = run_command([sys.executable, "-c", "print('hello')"], timeout=10)

    assert result.returncode == 0
    assert result.stdout.strip() == "hello"


def test_failure_includes_stderr_and_redacts_secret() -> None:
    cmd = [sys.executable, "-c", "import sys; sys.stderr.write('bad key tvly-secret'); sys.exit(3)"]

    with pytest.raises(CommandError) as excinfo:
        run_command(cmd, timeout=10, secrets=["tvly-secret"])

    assert excinfo.value.returncode == 3
    assert "exit=3" in str(excinfo.value)
    assert "tvly-secret" not in str(excinfo.value)
    assert "****" in str(excinfo.value)


def test_missing_binary_raises_not_found() -> None:
    with pytest.raises(CommandNotFoundError):
        run_command(["definitely-not-a-real-binary-mcpo"], timeout=10)


def test_capture_timeout() -> None:
    with pytest.raises(CommandTimeoutError):
        run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)


def test_stream_output_echoes_lines(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_out = io.StringIO()
    monkeypatch.setattr(sys, "stdout", fake_out)

    result = run_command([sys.executable, "-c", "print('step 1'); print('step 2')"], timeout=10, stream_output=True)

    assert "step 1" in result.stdout
    assert "step 2" in fake_out.getvalue()


def test_stream_output_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys, "stdout", io.StringIO())

    with pytest.raises(CommandError) as excinfo:
        run_command([sys.executable, "-c", "print('boom'); raise SystemExit(2)"], timeout=10, stream_output=True)

    assert excinfo.value.returncode == 2
    assert "boom" in excinfo.value.output


def test_stream_output_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys, "stdout", io.StringIO())

    with pytest.raises(CommandTimeoutError):
        run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.3, stream_output=True)


def test_format_command_masks_secrets() -> None:
    text = format_command(["az", "container", "create", "TAVILY_API_KEY=abc123"], ["abc123"])

    assert text == "az container create TAVILY_API_KEY=****"
