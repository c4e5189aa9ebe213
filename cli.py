"""CLI implementation for Rewind."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rewind import (
    config, APP_DATA_DIR, JsonFileStore, RewindError, number_lines,
    describe_message, check_response_format,
)
from pattern import example_template
from application_state import (
    state, init_app_state, setup_logging, load_conversation, save_debug_state,
    queue_local_message, clear_conversation,
)


def _fail(msg: str, code: int = 1):
    print(f"Error: {msg}", file=sys.stderr)
    sys.exit(code)

def _print_outcome(outcome):
    for msg in outcome.messages:
        print(f"  {describe_message(msg)}")
    if outcome.ok:
        print(f"Done: {len(outcome.messages)} message(s)")
    elif outcome.status == "cancelled":
        print("Cancelled", file=sys.stderr)
    else:
        _fail(str(outcome.error or "Generation failed"))

def _read_text_arg(args) -> str | None:
    if getattr(args, "file", None):
        try:
            return Path(args.file).read_text(encoding="utf-8")
        except OSError as e:
            _fail(f"Cannot read {args.file}: {e}")
    return getattr(args, "text", None)

def run_cli():
    """Run in CLI mode with subcommands."""
    setup_logging()
    console = logging.StreamHandler()
    console.setLevel(logging.WARNING)
    logging.getLogger().addHandler(console)

    parser = argparse.ArgumentParser(
        description="Rewind - conversation rollback and response versioning",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Subcommands:
  queue     Stage a message from you for the next send
  send      Generate a reply from the staged messages
  history   Show a conversation
  versions  Browse raw responses captured for the last attempt
  rollback  Remove the replies of the last attempt
  reroll    Roll back and generate again
  reapply   Roll back and apply edited raw text instead
  check     Check raw text against the reply format
  handlers  List registered rollback handlers
  state     Show plans, wallet and signature for a conversation
  clear     Delete a conversation
  config    Manage configuration

Examples:
  rewind queue alice "Are we still on for Friday?"
  rewind send alice
  rewind versions alice --prev --show
  rewind reapply alice --file edited.txt
"""
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    queue_parser = subparsers.add_parser("queue", help="Stage a message for the next send")
    queue_parser.add_argument("conversation", help="Conversation id")
    queue_parser.add_argument("text", nargs="+", help="Message text")

    send_parser = subparsers.add_parser("send", help="Generate a reply")
    send_parser.add_argument("conversation", help="Conversation id")
    send_parser.add_argument("-m", "--model", help="Model to use")

    history_parser = subparsers.add_parser("history", help="Show a conversation")
    history_parser.add_argument("conversation", help="Conversation id")
    history_parser.add_argument("-n", "--numbers", action="store_true", help="Show reference numbers")

    versions_parser = subparsers.add_parser("versions", help="Browse captured raw responses")
    versions_parser.add_argument("conversation", help="Conversation id")
    nav = versions_parser.add_mutually_exclusive_group()
    nav.add_argument("--prev", action="store_true", help="Select the previous version")
    nav.add_argument("--next", action="store_true", help="Select the next version")
    nav.add_argument("--index", type=int, help="Select a version by number (1-based)")
    versions_parser.add_argument("--show", action="store_true", help="Print the selected raw text")

    rollback_parser = subparsers.add_parser("rollback", help="Remove the replies of the last attempt")
    rollback_parser.add_argument("conversation", help="Conversation id")

    reroll_parser = subparsers.add_parser("reroll", help="Roll back and generate again")
    reroll_parser.add_argument("conversation", help="Conversation id")
    reroll_parser.add_argument("-m", "--model", help="Model to use")

    reapply_parser = subparsers.add_parser("reapply", help="Roll back and apply edited raw text")
    reapply_parser.add_argument("conversation", help="Conversation id")
    source = reapply_parser.add_mutually_exclusive_group()
    source.add_argument("-f", "--file", help="Read edited raw text from a file")
    source.add_argument("-t", "--text", help="Edited raw text")

    check_parser = subparsers.add_parser("check", help="Check raw text against the reply format")
    source = check_parser.add_mutually_exclusive_group()
    source.add_argument("-f", "--file", help="Read raw text from a file")
    source.add_argument("-t", "--text", help="Raw text")
    check_parser.add_argument("--name", help="Expected character name")
    check_parser.add_argument("--example", action="store_true", help="Print a correctly formatted example")

    subparsers.add_parser("handlers", help="List registered rollback handlers")

    state_parser = subparsers.add_parser("state", help="Show plans, wallet and signature")
    state_parser.add_argument("conversation", help="Conversation id")

    clear_parser = subparsers.add_parser("clear", help="Delete a conversation")
    clear_parser.add_argument("conversation", help="Conversation id")

    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_parser.add_argument("--path", action="store_true", help="Print the AppData folder path")
    config_parser.add_argument("--model", help="Set the default model")
    config_parser.add_argument("--api-key", help="Set the API key")
    config_parser.add_argument("--base-url", help="Set the API base URL")
    config_parser.add_argument("--system-prompt", help="Set the extra system prompt")
    stream = config_parser.add_mutually_exclusive_group()
    stream.add_argument("--stream", dest="stream", action="store_true", default=None, help="Stream responses")
    stream.add_argument("--no-stream", dest="stream", action="store_false", default=None, help="Wait for full responses")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == "config":
        if args.model:
            config.set_model(args.model)
            print(f"Model set to {args.model}")
        if args.api_key:
            config.set_api_key(args.api_key)
            print("Updated API key.")
        if args.base_url:
            config.set_api_base_url(args.base_url)
            print(f"API base URL set to {args.base_url}")
        if args.system_prompt:
            config.set_extra_system_prompt(args.system_prompt)
            print("Updated system prompt.")
        if args.stream is not None:
            config.set_stream(args.stream)
            print(f"Streaming {'enabled' if args.stream else 'disabled'}")
        if args.path:
            print(str(APP_DATA_DIR))
        return

    if args.command == "check":
        if args.example:
            print(example_template(args.name or "Name"))
            return
        text = _read_text_arg(args)
        if text is None:
            text = sys.stdin.read()
        problems = check_response_format(text, args.name)
        if problems:
            for p in problems:
                print(f"  {p}", file=sys.stderr)
            sys.exit(1)
        print("Format OK")
        return

    if state.store is None:
        init_app_state(JsonFileStore(config.store_dir))

    if getattr(args, "model", None):
        config.model = args.model

    conv = getattr(args, "conversation", None)
    try:
        if conv:
            load_conversation(conv)

        if args.command == "queue":
            msg = queue_local_message(conv, " ".join(args.text))
            print(f"Queued {msg['id']}")

        elif args.command == "send":
            if not state.pending.get(conv):
                _fail(f"Nothing queued for '{conv}'")
            outcome = asyncio.run(state.flow.send(conv))
            save_debug_state(conv)
            _print_outcome(outcome)

        elif args.command == "history":
            entries = state.log.load(conv)
            if not entries:
                print(f"No messages in '{conv}'")
                return
            for number, entry in number_lines(entries):
                prefix = f"#{number:<3} " if args.numbers and number is not None else ""
                print(f"{prefix}{entry.get('sender', '?'):>6} | {describe_message(entry)}")

        elif args.command == "versions":
            debug_state = state.states.get(conv)
            if debug_state is None or not debug_state.versions:
                print(f"No versions captured for '{conv}'")
                return
            if args.prev:
                debug_state.move(-1)
            elif args.next:
                debug_state.move(1)
            elif args.index is not None:
                debug_state.select(args.index - 1)
            current, total = debug_state.position()
            print(f"Version {current}/{total}")
            if args.show:
                print(debug_state.current().raw_text)
            save_debug_state(conv)

        elif args.command == "rollback":
            result = asyncio.run(state.coordinator.rollback_to_snapshot(conv))
            print(f"Removed {len(result.removed)} message(s), kept {len(result.kept)} after the checkpoint")
            if result.report.failed:
                print(f"{result.report.failed} rollback handler(s) failed, see the log", file=sys.stderr)

        elif args.command == "reroll":
            outcome = asyncio.run(state.flow.reroll(conv))
            save_debug_state(conv)
            _print_outcome(outcome)

        elif args.command == "reapply":
            text = _read_text_arg(args)
            if text is None:
                debug_state = state.states.get(conv)
                current = debug_state.current() if debug_state else None
                if current is None:
                    _fail("No edited text given and no captured version to reapply")
                text = current.raw_text
            applied = asyncio.run(state.flow.reapply(conv, text))
            save_debug_state(conv)
            for msg in applied:
                print(f"  {describe_message(msg)}")
            print(f"Applied {len(applied)} message(s)")

        elif args.command == "handlers":
            handlers = state.registry.describe()
            if not handlers:
                print("No rollback handlers registered")
            for name, priority in handlers:
                print(f"  {priority:>4}  {name}")

        elif args.command == "state":
            plans = state.plans.plans(conv)
            print(f"Plans ({len(plans)}):")
            for plan in plans:
                print(f"  [{plan.status}] {plan.title}")
            print(f"Wallet balance: {state.wallet.balance:.2f}")
            for tx in state.wallet.transactions(conv):
                print(f"  {tx.direction} {tx.amount:.2f} {tx.note}".rstrip())
            print(f"Signature: {state.signatures.current(conv) or '(none)'}")

        elif args.command == "clear":
            count = clear_conversation(conv)
            print(f"Cleared {count} message(s) from '{conv}'")

    except RewindError as e:
        _fail(str(e))
    except KeyboardInterrupt:
        print("\nCancelled", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run_cli()
