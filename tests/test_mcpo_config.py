import json

from mcpo_deploy import mcpo_config


def test_creates_template_when_missing(tmp_path) -> None:
    path = tmp_path / "config.json"

    created = mcpo_config.ensure_config_file(str(path))

    assert created
    data = json.loads(path.read_text(encoding="utf-8"))
    assert sorted(data["mcpServers"]) == ["context7", "sequential-thinking", "tavily"]
    assert data["mcpServers"]["tavily"]["args"] == ["-y", "tavily-mcp@0.1.3"]


def test_existing_file_is_not_touched(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text('{"mcpServers": {}}', encoding="utf-8")

    created = mcpo_config.ensure_config_file(str(path))

    assert not created
    assert path.read_text(encoding="utf-8") == '{"mcpServers": {}}'


def test_placeholder_secret_detected(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text('{"env": {"TAVILY_API_KEY": "your-tavily-api-key-here"}}', encoding="utf-8")

    assert mcpo_config.contains_placeholder_secret(str(path))


def test_placeholder_absent_in_default_template(tmp_path) -> None:
    path = tmp_path / "config.json"
    mcpo_config.ensure_config_file(str(path))

    assert not mcpo_config.contains_placeholder_secret(str(path))
    assert not mcpo_config.contains_placeholder_secret(str(tmp_path / "missing.json"))
