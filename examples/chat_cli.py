"""Interactive streaming chat in the terminal.

Demonstrates:
- Streaming answers through StreamOrchestrator subscribers
- Registering built-in tools with injected collaborators
- Speaking completed sentences while the answer streams
- Editing and resending the last question

Usage:
    uv run --env-file=.env examples/chat_cli.py --provider openai --model gpt-4o-mini
    uv run examples/chat_cli.py --provider local --url http://localhost:8000/v1 --model Qwen/Qwen3-8B --trace

Commands:
    /resend <text>   edit the last question and answer it again
    /speak           toggle reading answers aloud (printed with a > prefix)
"""

import argparse
import asyncio
import logging
from pathlib import Path

from colloquy.config import Settings
from colloquy.events import TurnAdded, TurnUpdated
from colloquy.orchestrator import StreamOrchestrator
from colloquy.provider import ModelProvider, OpenAICompatibleProvider, OpenAIProvider, OpenRouter
from colloquy.speech import SpeechQueue
from colloquy.tools import ToolDispatchTable
from colloquy.toolkit import read_files, user_location

PROVIDERS = {
    "openai": lambda url: OpenAIProvider(),
    "openrouter": lambda url: OpenRouter(),
    "local": lambda url: OpenAICompatibleProvider(base_url=url),
}


def make_provider(provider: str, url: str | None) -> ModelProvider:
    if provider == "local" and not url:
        raise SystemExit("--url is required for local provider")
    return PROVIDERS[provider](url)


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from colloquy.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


def extract_text(attachment):
    return Path(attachment.path).read_text(errors="replace")


class TerminalPrinter:
    """Prints only the new part of each streamed turn."""

    def __init__(self):
        self.printed: dict[str, int] = {}

    def __call__(self, event):
        if isinstance(event, TurnAdded) and event.role != "user":
            self.watch(event.turn_id)
        if not isinstance(event, TurnUpdated):
            return
        seen = self.printed.get(event.turn_id)
        if seen is None:
            return
        text = event.content + event.tool_log
        if len(text) > seen:
            print(text[seen:], end="", flush=True)
            self.printed[event.turn_id] = len(text)

    def watch(self, turn_id: str):
        self.printed[turn_id] = 0


async def main():
    parser = argparse.ArgumentParser(description="Streaming chat")
    parser.add_argument("--provider", choices=PROVIDERS, default="openai")
    parser.add_argument("--model", default=None)
    parser.add_argument("--url", default=None)
    parser.add_argument("--trace", action="store_true")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
    )
    if args.trace:
        setup_tracing("colloquy-chat")

    settings = Settings(model=args.model) if args.model else Settings()
    orchestrator = StreamOrchestrator(
        make_provider(args.provider, args.url),
        tools=ToolDispatchTable([
            read_files(extract_text),
            user_location(lambda: "unknown"),
        ]),
        settings=settings,
        speech=SpeechQueue(speak=lambda sentence: print(f"\n> {sentence}")),
    )
    printer = TerminalPrinter()
    orchestrator.subscribe(printer)

    print("Colloquy chat (Ctrl-D quits)\n")

    while True:
        try:
            user_input = input("You: ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if user_input.strip() == "/speak":
            orchestrator.speak_answers = not orchestrator.speak_answers
            print(f"Speech {'on' if orchestrator.speak_answers else 'off'}\n")
            continue

        print("Assistant: ", end="", flush=True)
        if user_input.startswith("/resend "):
            last_user = orchestrator.conversation.last_user_turn()
            if last_user is None:
                print("nothing to resend\n")
                continue
            for turn in orchestrator.conversation.turns[orchestrator.conversation.index_of(last_user.id) + 1:]:
                printer.watch(turn.id)
            request = orchestrator.resend(last_user.id, user_input[len("/resend "):])
        else:
            request = orchestrator.submit(user_input)

        last = await request
        if last.error:
            print(f"\n[error: {last.error}]", end="")
        print("\n")


if __name__ == "__main__":
    asyncio.run(main())
