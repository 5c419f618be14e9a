"""
Interactive console for the portfolio chat assistant.

Talks to a running API the same way the site widget does: the guest
identifier is kept in a local JSON file so the conversation survives restarts.

Run:
  python scripts/chat_console.py --base-url http://localhost:8000
Commands:
  /history  show the stored conversation
  /clear    delete the conversation and start fresh
  /quit     exit
"""
from __future__ import annotations

import argparse
from pathlib import Path
import sys

# Ensure repository root is on sys.path so 'src' package can be imported when
# executing this script from the scripts/ directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.portfolio.client.chat_client import ChatClient, ChatClientError, FileIdentityStorage
from src.portfolio.domain.identity import GuestIdentityProvider


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with the portfolio assistant")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--user-id", default=None, help="Signed-in account id; omit to chat as a guest")
    parser.add_argument(
        "--storage",
        default=str(Path.home() / ".portfolio_chat.json"),
        help="File holding the guest identifier",
    )
    return parser.parse_args(argv)


def _print_history(client: ChatClient) -> None:
    conversation = client.load_conversation()
    if conversation is None:
        print("(no conversation yet)")
        return
    for msg in conversation.messages:
        who = "you" if msg.role == "user" else "assistant"
        print(f"[{who}] {msg.content}")


def main(argv=None) -> int:
    args = parse_args(argv)
    provider = GuestIdentityProvider(FileIdentityStorage(args.storage))
    client = ChatClient(args.base_url, provider, account_id=args.user_id)

    pending = ""
    while True:
        try:
            line = input("> " if not pending else f"> (retry: {pending}) ")
        except (EOFError, KeyboardInterrupt):
            print()
            return 0
        text = line.strip() or pending
        if not text:
            continue
        try:
            if text == "/quit":
                return 0
            if text == "/history":
                _print_history(client)
                continue
            if text == "/clear":
                client.clear_conversation()
                pending = ""
                print("(conversation cleared)")
                continue
            reply = client.send_message(text)
        except ChatClientError as exc:
            print(f"! {exc.error}")
            if exc.details:
                print(f"  {exc.details}")
            if not text.startswith("/"):
                # Keep the unsent text; an empty line resends it.
                pending = text
            continue
        pending = ""
        if reply is not None:
            print(reply.response)


if __name__ == "__main__":
    raise SystemExit(main())
