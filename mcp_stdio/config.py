"""
Server launch configuration.

Accepts the common ``mcpServers`` JSON layout:

    {
      "mcpServers": {
        "filesystem": {
          "command": "node",
          "args": ["build/index.js"],
          "env": {"MCP_TOOLSKIT_CONFIG_PATH": "/tmp/config.json"}
        }
      }
    }

or the same mapping without the ``mcpServers`` wrapper. ``command`` may
also be given as a full argv list.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class ServerConfig:
    """How to launch and talk to one server."""
    server_id: str
    command: list[str]
    env: dict[str, str] = field(default_factory=dict)
    request_timeout: float | None = 30.0
    init_timeout: float = 30.0
    startup_delay: float = 1.0

    @classmethod
    def from_dict(cls, server_id: str, data: dict[str, Any]) -> "ServerConfig":
        if not isinstance(data, dict):
            raise ValueError(f"Server '{server_id}': expected an object, got {type(data).__name__}")

        command = data.get("command")
        if isinstance(command, str):
            argv = [command]
        elif isinstance(command, list) and all(isinstance(part, str) for part in command):
            argv = list(command)
        else:
            raise ValueError(f"Server '{server_id}': 'command' must be a string or list of strings")
        if not argv or not argv[0]:
            raise ValueError(f"Server '{server_id}': 'command' is empty")

        args = data.get("args", [])
        if not isinstance(args, list):
            raise ValueError(f"Server '{server_id}': 'args' must be a list")
        argv.extend(str(arg) for arg in args)

        env = data.get("env", {})
        if not isinstance(env, dict):
            raise ValueError(f"Server '{server_id}': 'env' must be an object")

        config = cls(
            server_id=server_id,
            command=argv,
            env={str(k): str(v) for k, v in env.items()},
        )
        for key in ("request_timeout", "init_timeout", "startup_delay"):
            if key in data:
                setattr(config, key, data[key])
        return config

    def client_options(self) -> dict[str, Any]:
        """Keyword arguments for StdioClient."""
        return {
            "name": self.server_id,
            "request_timeout": self.request_timeout,
            "init_timeout": self.init_timeout,
            "startup_delay": self.startup_delay,
        }


def load_server_configs(data: dict[str, Any]) -> list[ServerConfig]:
    """Parse a server mapping, with or without the ``mcpServers`` wrapper."""
    if not isinstance(data, dict):
        raise ValueError("Server configuration must be a JSON object")
    servers = data.get("mcpServers", data)
    if not isinstance(servers, dict):
        raise ValueError("'mcpServers' must be a JSON object")
    return [ServerConfig.from_dict(server_id, entry) for server_id, entry in servers.items()]


def load_config_file(path: str | Path) -> list[ServerConfig]:
    """Read server configurations from a JSON file."""
    return load_server_configs(json.loads(Path(path).read_text(encoding="utf-8")))
