"""
Run Client: stdio tool servers → aggregated tools → calls, end to end.

This script:
1. Loads server definitions from an mcpServers-style JSON file
2. Starts the servers (stdio subprocesses) and waits for their sessions
3. Lists the aggregated tools in LLM tool-calling format
4. Optionally invokes one tool by its external name
5. Stops every server

Usage:
    # List tools from every configured server
    python run_client.py --config servers.json --list

    # Only some servers
    python run_client.py --config servers.json --servers filesystem --list

    # Call a tool (external name = <server>__<tool>)
    python run_client.py --config servers.json --call filesystem__search_files \\
        --args '{"path": "/tmp", "pattern": "*.ts"}'
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from mcp_stdio.config import load_config_file
from mcp_stdio.errors import MCPClientError
from mcp_stdio.manager import ToolServerManager

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


async def start_servers(
    manager: ToolServerManager,
    config_path: str,
    server_ids: list[str] | None = None,
) -> dict[str, bool]:
    """Register the configured servers and start them in parallel."""
    configs = load_config_file(config_path)
    for config in configs:
        if server_ids and config.server_id not in server_ids:
            continue
        manager.register_config(config)

    for sid in server_ids or []:
        if sid not in manager.list_servers():
            logger.warning(f"Unknown server: {sid}")

    started = await manager.start_all()
    for sid, ok in started.items():
        if ok:
            client = manager.get_client(sid)
            logger.info(f"  [{sid}] started, server: {client.get_server_name()}")
        else:
            logger.error(f"  [{sid}] failed to start")
    return started


async def run(args: argparse.Namespace) -> int:
    manager = ToolServerManager()

    try:
        print("Starting tool servers...")
        started = await start_servers(manager, args.config, args.servers)
        if not any(started.values()):
            print("Error: no server could be started.")
            return 1

        mappings = await manager.refresh_tools()
        print(f"Discovered {len(mappings)} tools: {[m.external_name for m in mappings]}\n")

        if args.list:
            print(json.dumps(manager.tool_params(), indent=2))

        if args.call:
            try:
                arguments = json.loads(args.args) if args.args else {}
            except json.JSONDecodeError as e:
                print(f"Error: --args is not valid JSON: {e}")
                return 2

            print(f"Calling {args.call} with {arguments}\n")
            print("=" * 60)
            try:
                result = await asyncio.wait_for(
                    manager.dispatch(args.call, arguments),
                    timeout=args.timeout,
                )
            except (MCPClientError, asyncio.TimeoutError) as e:
                print(f"Tool call failed: {e}")
                return 1
            finally:
                print("=" * 60)
            print(result.content)
            return 1 if result.is_error else 0

        return 0
    finally:
        await manager.stop_all()
        print("\nTool servers stopped.")


def main():
    parser = argparse.ArgumentParser(
        description="Start stdio tool servers, list their tools, and call one.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_client.py --config servers.json --list
  python run_client.py --config servers.json --call filesystem__search_files --args '{"path": "/tmp", "pattern": "*.ts"}'
        """,
    )
    parser.add_argument("--config", "-c", type=str, required=True, help="JSON file with an mcpServers mapping")
    parser.add_argument("--servers", type=str, nargs="*", default=None, help="Which servers to start (default: all)")
    parser.add_argument("--list", action="store_true", help="Print the aggregated tool descriptors")
    parser.add_argument("--call", type=str, default=None, help="External tool name to invoke")
    parser.add_argument("--args", type=str, default=None, help="Tool arguments as a JSON object")
    parser.add_argument("--timeout", type=float, default=60.0, help="Overall timeout for --call, in seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.list and not args.call:
        parser.error("nothing to do: use --list and/or --call")

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)


if __name__ == "__main__":
    main()
