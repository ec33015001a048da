"""Terminal client: log in and follow the chat as it changes."""

import argparse
import getpass
import logging
import sys
from typing import Optional

from chatroom.error_actions import Action, ClientAction
from chatroom.reconcile import ReconcileResult
from chatroom.sync_client import DEFAULT_POLL_INTERVAL, DEFAULT_TIMEOUT, ApiError, ChatApi, SyncEngine

logger = logging.getLogger(__name__)


def format_message(message) -> str:
    author = f"{message.user.first_name} {message.user.last_name}" if message.user else f"user {message.user_id}"
    stamp = message.updated_at.strftime("%d/%m/%Y, %H:%M:%S")
    return f"[{message.id}] {author} ({stamp}): {message.content}"


class TerminalView:
    """Prints reconciled changes and failed-request actions."""

    def __init__(self, engine: Optional[SyncEngine] = None, out=None):
        self.engine = engine
        self.out = out or sys.stdout

    def show_all(self) -> None:
        for message in self.engine.displayed:
            print(format_message(message), file=self.out)

    def on_change(self, result: ReconcileResult) -> None:
        for message_id in result.added:
            print("+ " + format_message(self.engine.displayed.get(message_id)), file=self.out)
        for message_id in result.updated:
            print("~ " + format_message(self.engine.displayed.get(message_id)), file=self.out)
        for message_id in result.removed:
            print(f"- [{message_id}] deleted", file=self.out)

    def on_action(self, action: ClientAction) -> None:
        if action.action is Action.SHOW_NOTICE:
            print(f"! {action.notice}", file=self.out)
        elif action.action is Action.REDIRECT_TO_LOGIN:
            print("! Session expired, please log in again", file=self.out)
            self.engine.stop()
        else:
            print("! Unexpected error, please try again later.", file=self.out)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Follow a chatroom from the terminal")
    parser.add_argument("--url", default="http://localhost:8000", help="Server base URL")
    parser.add_argument("--email", required=True, help="Account email")
    parser.add_argument("--interval", type=float, default=DEFAULT_POLL_INTERVAL, help="Seconds between polls")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Per-request timeout in seconds")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.WARNING)

    api = ChatApi.connect(args.url, timeout=args.timeout)
    try:
        password = getpass.getpass("Password: ")
        try:
            user = api.login(args.email, password)
        except ApiError as exc:
            print(f"Login failed: {exc.message}", file=sys.stderr)
            return 1
        print(f"Logged in as {user.first_name} {user.last_name}")

        view = TerminalView()
        engine = SyncEngine(api, notifier=view.on_action, interval=args.interval, on_change=view.on_change)
        view.engine = engine
        if engine.load():
            view.show_all()
        try:
            engine.run()
        except KeyboardInterrupt:
            pass
        return 0
    finally:
        api.close()


if __name__ == "__main__":
    sys.exit(main())
