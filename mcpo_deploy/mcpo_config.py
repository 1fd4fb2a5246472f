"""
mcpo_config
-----------

배포되는 MCPO 가 읽는 config.json (mcpServers 정의) 템플릿 관리.
내용은 해석하지 않고, 파일 존재 여부와 placeholder secret 포함 여부만 본다.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Tuple

from .logging_utils import get_logger


logger = get_logger(__name__)


PLACEHOLDER_SECRET = "your-tavily-api-key"

DEFAULT_MCP_SERVERS: Dict[str, Dict[str, Any]] = {
    "context7": {
        "command": "npx",
        "args": ["-y", "@upstash/context7-mcp"],
    },
    "tavily": {
        "command": "npx",
        "args": ["-y", "tavily-mcp@0.1.3"],
    },
    "sequential-thinking": {
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-sequential-thinking"],
    },
}

# 요약 출력용 (경로, 표시 이름)
SERVER_ENDPOINTS: List[Tuple[str, str]] = [
    ("context7", "Context7 MCP Server"),
    ("tavily", "Tavily MCP Server"),
    ("sequential-thinking", "Sequential Thinking MCP Server"),
]


def default_config() -> Dict[str, Any]:
    return {"mcpServers": json.loads(json.dumps(DEFAULT_MCP_SERVERS))}


def ensure_config_file(path: str = "config.json") -> bool:
    """
    config.json 이 없으면 기본 템플릿으로 생성한다.
    생성했으면 True, 이미 있으면 False.
    """
    if os.path.exists(path):
        logger.debug("기존 config.json 을 사용합니다: %s", path)
        return False

    with open(path, "w", encoding="utf-8") as f:
        json.dump(default_config(), f, indent=2)
        f.write("\n")
    logger.info("config.json 템플릿을 생성했습니다: %s", path)
    return True


def contains_placeholder_secret(path: str = "config.json") -> bool:
    if not os.path.exists(path):
        return False
    with open(path, "r", encoding="utf-8") as f:
        return PLACEHOLDER_SECRET in f.read()
