"""CLI entry point for the Medicare Coverage Assistant.

A terminal chat for development.  For production, use the FastAPI server
(``coverage_assistant/server.py``).

Usage:
    python -m coverage_assistant.main            # normal mode (quiet)
    python -m coverage_assistant.main --debug    # debug mode (iteration logs)
"""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from coverage_assistant.agent import TurnResult, create_coverage_agent
from coverage_assistant.errors import CoverageAssistantError
from coverage_assistant.session import SessionState

logger = logging.getLogger(__name__)

ASSISTANT = "Assistant"
SORRY = "Sorry, I couldn't finish that answer. Please try again or type 'new' to start over."


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("coverage_assistant").setLevel(logging.DEBUG if debug else logging.WARNING)


def _print_reply(content: str, suggestions: list[str]) -> None:
    print(f"\n{ASSISTANT}: {content}\n")
    if suggestions:
        print("  Suggestions: " + " | ".join(suggestions) + "\n")


def take_turn(agent, history: list[dict[str, str]], session: SessionState) -> TurnResult | None:
    """Run one turn.  On failure, drop the user's message and return ``None``."""
    try:
        return agent.run_turn(history, session)
    except CoverageAssistantError as e:
        logger.debug("Turn failed: %s (%s)", e, e.kind, exc_info=True)
    except Exception:
        logger.exception("Error processing message")
    history.pop()
    print(f"\n{ASSISTANT}: {SORRY}\n")
    return None


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Medicare Coverage Assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including per-iteration loop logs",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Medicare Coverage Assistant - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    agent = create_coverage_agent()
    history: list[dict[str, str]] = []
    session = SessionState()

    try:
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
                history = []
                session = SessionState()
                print("\n>> New conversation started.\n")
                continue

            history.append({"role": "user", "content": user_input})
            try:
                result = take_turn(agent, history, session)
            except KeyboardInterrupt:
                print("\n\nGoodbye!")
                break
            if result is None:
                continue

            session = result.session_state
            history.append({"role": "assistant", "content": result.content})
            _print_reply(result.content, result.suggestions)
            if args.debug and result.capabilities_used:
                print(f"  [capabilities: {', '.join(result.capabilities_used)}]\n")
    finally:
        agent.close()


if __name__ == "__main__":
    main()
