"""Streaming chat with MCP tools and task progress reporting.

Demonstrates:
- Building a ProviderRegistry from environment settings
- Connecting to an MCP server for tools (or using local tools offline)
- Streaming a ChatBridge turn and printing text as it arrives
- Tracking the turn as a Task with progress notifications

Usage:
    uv run --env-file=.env examples/chat_bridge_example.py "Format this js: let x=1"
    uv run --env-file=.env examples/chat_bridge_example.py --offline --provider openai "Count words in: a b c"
"""

import argparse
import asyncio
import json

from mcpbridge import (
    ChatBridge,
    ElicitationBroker,
    Settings,
    TaskManager,
    build_registry,
    configure_logging,
)
from mcpbridge.tools import MCPToolCollaborator, StaticToolCollaborator


def word_count(text: str):
    """Count the words in a piece of text."""
    return len(text.split())


async def print_notification(notification: dict):
    print(f"\n<< {json.dumps(notification)}")


async def run(prompt: str, provider: str | None, offline: bool):
    settings = Settings.from_env()
    registry = build_registry(settings)
    tasks = TaskManager(
        send_notification=print_notification,
        max_history_size=settings.max_task_history,
    )

    if offline or settings.skip_mcp_connection:
        tools = StaticToolCollaborator([word_count])
    else:
        tools = MCPToolCollaborator(
            settings.tools_url,
            registry=registry,
            broker=ElicitationBroker(timeout=settings.elicitation_timeout),
        )
        await tools.connect()

    bridge = ChatBridge(
        registry, tools,
        max_rounds=settings.max_rounds, max_tokens=settings.max_tokens,
    )
    task = tasks.create_task(f"Chat: {prompt[:40]}", progress_token="chat-1")
    rounds = 0
    try:
        async for chunk in bridge.chat_stream(prompt, provider=provider):
            if chunk.content:
                print(chunk.content, end="", flush=True)
            if chunk.finish_reason:
                rounds += 1
                await tasks.update_progress(
                    task.id, "chat-1", rounds * 100 // (settings.max_rounds + 1),
                    f"Round {rounds} finished ({chunk.finish_reason})",
                )
        tasks.complete_task(task.id, {"rounds": rounds})
    except Exception as e:
        tasks.fail_task(task.id, str(e))
        raise
    finally:
        if isinstance(tools, MCPToolCollaborator):
            await tools.close()
        print()
        print(tasks.to_task_result(task.id).model_dump_json(by_alias=True, exclude_none=True))


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("prompt")
    parser.add_argument("--provider", choices=["claude", "openai"], default=None)
    parser.add_argument("--offline", action="store_true", help="Use local tools instead of MCP")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(run(args.prompt, args.provider, args.offline))


if __name__ == "__main__":
    main()
