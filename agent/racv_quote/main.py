"""
RACV Quote Agent - Main Entry Point

Chat with the quote agent from the terminal.
"""

import asyncio
import os
import sys
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

from racv_quote.agent import run_agent
from racv_quote.automation.session_manager import get_session_store


async def interactive_mode():
    """Run the agent in interactive CLI mode."""
    print("RACV Quote Assistant")
    print("=" * 50)
    print("Tell me about your car and I'll get you an RACV insurance quote.")
    print("Type 'quit' or 'exit' to end the session.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("quit", "exit", "q"):
            print("Goodbye!")
            break

        try:
            response = await run_agent(user_input)
            print(f"\nAssistant: {response}\n")
        except Exception as e:
            print(f"\nError: {e}\n")


async def single_task(task: str):
    """Run a single task and exit."""
    response = await run_agent(task)
    print(response)


async def run(task: str = ""):
    # One event loop for the whole run: browser sessions live on it
    store = get_session_store()
    store.start()
    try:
        if task:
            await single_task(task)
        else:
            await interactive_mode()
    finally:
        await store.stop()


def main():
    """Main entry point."""
    if not os.getenv("ANTHROPIC_API_KEY"):
        print("Error: ANTHROPIC_API_KEY environment variable is required")
        sys.exit(1)

    # Join all arguments as a single task
    task = " ".join(sys.argv[1:])
    asyncio.run(run(task))


if __name__ == "__main__":
    main()
