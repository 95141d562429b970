#!/usr/bin/env python3
"""
Medical Interpreter - Command Line Interface

Commands:
    detect   - Run the text detectors on a sentence
    wake     - Check a transcript against the wake phrase
    history  - Show saved conversations
    session  - Run a live interpreter session

Usage:
    python -m medinterp.cli detect "¿Puede repetir eso?"
    python -m medinterp.cli wake "hey sully"
    python -m medinterp.cli history --latest
    python -m medinterp.cli session

For help on a specific command:
    python -m medinterp.cli <command> --help
"""

import argparse
import asyncio
import json
import sys
from dataclasses import replace

from medinterp.config import settings
from medinterp.logger import get_logger, init_logging

# Initialize logging
init_logging()
logger = get_logger(__name__)


def cmd_detect(args: argparse.Namespace) -> int:
    """Classify a sentence with every detector."""
    from medinterp.realtime.detectors import TextDetectors

    detectors = TextDetectors()
    text = args.text
    result = {
        "language": detectors.detect_language(text).value,
        "repeat_request": detectors.is_repeat_request(text),
        "primary_speaker": detectors.is_primary_speaker(text),
        "conversation_ending": detectors.is_conversation_ending(text),
        "summary_like": detectors.looks_like_summary(text),
    }

    if args.json:
        print(json.dumps(result, ensure_ascii=False))
        return 0

    print(f"\n🔎 {text}")
    print("-" * 50)
    for key, value in result.items():
        print(f"   {key:<20} {value}")
    print()
    return 0


def cmd_wake(args: argparse.Namespace) -> int:
    """Check whether a transcript triggers the wake phrase."""
    from medinterp.realtime.wake_phrase import matches_wake_phrase

    matched = matches_wake_phrase(args.transcript, args.previous or "", wake_phrase=args.phrase)
    print("✅ Wake phrase detected" if matched else "❌ No wake phrase")
    return 0 if matched else 1


def cmd_history(args: argparse.Namespace) -> int:
    """Show saved conversations."""
    from sqlalchemy.exc import SQLAlchemyError
    from medinterp.db import ConversationRepository

    try:
        repo = ConversationRepository()
        if args.id:
            record = repo.get(args.id)
            if record is None:
                print(f"❌ Conversation not found: {args.id}")
                return 1
            records = [record]
        elif args.latest:
            record = repo.latest()
            records = [record] if record else []
        else:
            records = repo.all(limit=args.limit)
    except SQLAlchemyError as e:
        print(f"❌ Could not read conversations: {e}")
        logger.exception("History error")
        return 1

    if not records:
        print("📭 No saved conversations.")
        return 0

    for record in records:
        print(f"\n🗂  {record['id']}  ({record['timestamp']})")
        print("-" * 50)
        if args.full:
            for turn in record["conversation"]:
                print(f"   [{turn.get('role')}] {turn.get('text')}")
            print()
        print(f"   Turns:   {len(record['conversation'])}")
        print(f"   Actions: {', '.join(a.get('type', '?') for a in record['actions']) or 'none'}")
        if record["summary"]:
            print(f"\n{record['summary']}")
    print()
    return 0


async def _run_session(args: argparse.Namespace) -> None:
    from medinterp.realtime.session_controller import SessionController
    from medinterp.services.medical_tools import register_medical_tools

    finished = asyncio.Event()
    printed = set()

    def on_end() -> None:
        print("\n🏁 Conversation ended.")
        finished.set()

    session_config = replace(settings.session, language=args.language or settings.session.language)
    controller = SessionController(
        session_config=session_config,
        on_conversation_end=on_end,
        on_status=lambda label: print(f"ℹ️  {label}"),
    )
    register_medical_tools(controller, on_session_end=on_end)

    async def print_turns() -> None:
        while True:
            for turn in controller.conversation:
                if turn.is_final and turn.id not in printed:
                    printed.add(turn.id)
                    icon = "🗣 " if turn.role.value == "user" else "🤖"
                    print(f"{icon} {turn.text}")
            await asyncio.sleep(0.25)

    async def read_input() -> None:
        while not finished.is_set():
            raw = await asyncio.to_thread(sys.stdin.readline)
            if raw == "":
                finished.set()
                break
            line = raw.strip()
            if not line:
                continue
            if line in ("/quit", "/exit"):
                finished.set()
            elif line == "/summary":
                summary = await controller.request_summary()
                if summary:
                    print(f"\n{summary}\n")
            else:
                controller.send_text(line)

    async with controller:
        if not await controller.start():
            return
        print("\nType a message to send it, /summary for a summary, /quit to stop.\n")
        tasks = [asyncio.create_task(print_turns()), asyncio.create_task(read_input())]
        try:
            await finished.wait()
        finally:
            for task in tasks:
                task.cancel()

    if controller.summary:
        print("\n📝 Summary")
        print("-" * 50)
        print(controller.summary)
    if controller.detected_actions:
        print("\n📋 Detected actions")
        for action in controller.detected_actions:
            print(f"   - {action.type}: {json.dumps(action.data, ensure_ascii=False)}")
    print()


def cmd_session(args: argparse.Namespace) -> int:
    """Run a live interpreter session until /quit or Ctrl+C."""
    try:
        settings.realtime.validate()
        settings.audio.validate()
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}")
        return 1

    print(f"\n🎙  Medical interpreter ({settings.realtime.model}, voice {settings.realtime.voice})")
    print(f"   Capture: {settings.audio.capture_device} ({settings.audio.capture_format})")

    try:
        asyncio.run(_run_session(args))
        return 0
    except KeyboardInterrupt:
        print("\n\n👋 Session interrupted.")
        return 0
    except Exception as e:
        print(f"❌ Session failed: {e}")
        logger.exception("Session error")
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all commands."""
    parser = argparse.ArgumentParser(
        prog="medinterp",
        description="Realtime medical interpreter CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Classify text:
    python -m medinterp.cli detect "What time is it?"
    python -m medinterp.cli detect "¿Cuántos años tiene?" --json

  Saved conversations:
    python -m medinterp.cli history
    python -m medinterp.cli history --latest --full

  Live session:
    python -m medinterp.cli session --language spanish
        """
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Detect command
    detect_parser = subparsers.add_parser(
        "detect",
        help="Run the text detectors on a sentence"
    )
    detect_parser.add_argument(
        "text",
        help="Text to classify"
    )
    detect_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON"
    )
    detect_parser.set_defaults(func=cmd_detect)

    # Wake command
    wake_parser = subparsers.add_parser(
        "wake",
        help="Check a transcript against the wake phrase"
    )
    wake_parser.add_argument(
        "transcript",
        help="Recognized transcript"
    )
    wake_parser.add_argument(
        "--previous", "-p",
        help="Previous transcript fragment"
    )
    wake_parser.add_argument(
        "--phrase",
        default="hey sully",
        help="Wake phrase (default: hey sully)"
    )
    wake_parser.set_defaults(func=cmd_wake)

    # History command
    history_parser = subparsers.add_parser(
        "history",
        help="Show saved conversations"
    )
    history_parser.add_argument(
        "--id",
        help="Show one conversation by id"
    )
    history_parser.add_argument(
        "--latest",
        action="store_true",
        help="Show only the latest conversation"
    )
    history_parser.add_argument(
        "--limit", "-n",
        type=int,
        default=10,
        help="Maximum number of conversations (default: 10)"
    )
    history_parser.add_argument(
        "--full",
        action="store_true",
        help="Print every turn"
    )
    history_parser.set_defaults(func=cmd_history)

    # Session command
    session_parser = subparsers.add_parser(
        "session",
        help="Run a live interpreter session"
    )
    session_parser.add_argument(
        "--language", "-l",
        choices=["english", "spanish"],
        help=f"Response language (default: {settings.session.language})"
    )
    session_parser.set_defaults(func=cmd_session)

    return parser


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    if args.verbose:
        import logging
        logging.getLogger().setLevel(logging.DEBUG)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
