"""CLI entry point for the Frontapp bridge.

Two command groups:

* ``webhooks`` manages the Frontapp webhook subscriptions that point at
  ``WEBHOOK_BASE_URL``.
* ``chat`` runs the helpdesk agent in a terminal chat loop for testing.
  For production, use the FastAPI server (frontapp_bridge/server.py).

Usage:
    python -m frontapp_bridge.main webhooks list
    python -m frontapp_bridge.main webhooks subscribe --events conversation.created,contact.created
    python -m frontapp_bridge.main webhooks unsubscribe --events contact.created
    python -m frontapp_bridge.main webhooks all       # every handled event type
    python -m frontapp_bridge.main webhooks none      # remove every subscription
    python -m frontapp_bridge.main chat [--debug]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid

from dotenv import load_dotenv
from langchain_core.messages import HumanMessage

from frontapp_bridge.config import WEBHOOK_BASE_URL
from frontapp_bridge.services.frontapp_client import FrontappClient
from frontapp_bridge.webhooks import SubscriptionManager
from frontapp_bridge.webhooks.handlers import HANDLERS

logger = logging.getLogger(__name__)

WEBHOOK_ACTIONS = ("list", "subscribe", "unsubscribe", "all", "none")


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("frontapp_bridge").setLevel(logging.DEBUG if debug else logging.INFO)


def _parse_events(raw: str | None) -> list[str]:
    return [e.strip() for e in (raw or "").split(",") if e.strip()]


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser = argparse.ArgumentParser(prog="frontapp-bridge", description="Frontapp bridge CLI")
    commands = parser.add_subparsers(dest="command", required=True)

    hooks = commands.add_parser(
        "webhooks", parents=[common], help="Manage Frontapp webhook subscriptions",
    )
    hooks.add_argument("action", choices=WEBHOOK_ACTIONS)
    hooks.add_argument(
        "--events", default=None,
        help="Comma-separated event types (for subscribe / unsubscribe)",
    )

    commands.add_parser(
        "chat", parents=[common], help="Chat with the helpdesk agent in the terminal",
    )
    return parser


# ── webhooks ────────────────────────────────────────────────────────


async def run_webhooks(action: str, events: list[str]) -> int:
    """Run one subscription action.  Returns the process exit code."""
    if action in ("subscribe", "unsubscribe") and not events:
        print(f"--events is required for '{action}'", file=sys.stderr)
        return 2
    if action in ("subscribe", "all") and not WEBHOOK_BASE_URL:
        print("WEBHOOK_BASE_URL must be set to subscribe", file=sys.stderr)
        return 2

    client = FrontappClient()
    manager = SubscriptionManager(client, WEBHOOK_BASE_URL or "http://localhost")
    try:
        if action == "list":
            await manager.initialize()
            if not manager.subscriptions:
                print("No webhook subscriptions.")
            for sub in manager.subscriptions:
                print(f"{sub.id}  {sub.url}  {', '.join(sub.events)}")
        elif action == "subscribe":
            added = await manager.reconcile(events)
            print(f"Subscribed: {', '.join(added)}" if added else "Already subscribed.")
        elif action == "all":
            added = await manager.reconcile(sorted(str(t) for t in HANDLERS))
            print(f"Subscribed: {', '.join(added)}" if added else "Already subscribed.")
        elif action == "unsubscribe":
            removed = await manager.unsubscribe(events)
            print(f"Removed {len(removed)} subscription(s).")
        else:
            removed = await manager.unsubscribe_all()
            print(f"Removed {len(removed)} subscription(s).")
    except Exception as e:
        logger.exception("Webhook command '%s' failed", action)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await client.aclose()
    return 0


# ── chat ────────────────────────────────────────────────────────────


async def run_chat() -> None:
    """Run the interactive CLI chat loop."""
    from frontapp_bridge.agent import create_frontapp_agent

    print("\n" + "=" * 60)
    print("  Frontapp Helpdesk Agent - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    agent = create_frontapp_agent()
    session_id = str(uuid.uuid4())
    logger.info("Started new session: %s", session_id)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        if user_input.lower() == "new":
            session_id = str(uuid.uuid4())
            print(f"\n>> New session started: {session_id[:8]}...\n")
            continue

        try:
            result = await agent.ainvoke(
                {"messages": [HumanMessage(content=user_input)]},
                config={"configurable": {"thread_id": session_id}},
            )

            messages = result.get("messages", [])
            if not messages:
                print("Agent: I wasn't able to generate a response. Please try again.\n")
                continue

            last_message = messages[-1]
            reply = last_message.content if hasattr(last_message, "content") else str(last_message)
            print(f"\nAgent: {reply}\n")

        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nAgent: something went wrong: {e}")
            print("       Please try again or type 'new' to start a fresh session.\n")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    load_dotenv()
    _configure_logging(debug=args.debug)

    if args.command == "webhooks":
        return asyncio.run(run_webhooks(args.action, _parse_events(args.events)))
    asyncio.run(run_chat())
    return 0


if __name__ == "__main__":
    sys.exit(main())
