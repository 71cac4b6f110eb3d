"""
Demo of UnifiedChatClient with the rich printers.

Configure a provider in `.env` (see LLM_PROVIDER, <PROVIDER>_API_KEY), then run:

    python demo.py [provider]
"""
import asyncio
import sys
from typing import List

from rich.console import Console

from llmgate import LLMGateError, Message, RichPrinter, RichStreamPrinter, UnifiedChatClient
from llmgate.config import configure_logging

console = Console()


async def demo_chat(client: UnifiedChatClient, provider: str):
    console.print("[bold cyan]=== Chat ===")
    messages: List[Message] = [
        {"role": "system", "content": "You are a concise assistant."},
        {"role": "user", "content": "introduce yourself in one sentence using markdown syntax."},
    ]
    response = await client.chat(messages, provider, temperature=0.7, max_tokens=500)
    RichPrinter().print_chat(response)


async def demo_stream(client: UnifiedChatClient, provider: str):
    console.print("[bold cyan]\n=== Stream ===")
    printer = RichStreamPrinter(title="Markdown Demo", code_theme="dracula", refresh_rate=40)
    final_event = await printer.print_stream(
        client.stream_chat("Write a haiku about HTTP retries.", provider, max_tokens=200)
    )
    if final_event.get("type") == "error":
        console.print(f"[red]Stream failed: {final_event['error']}")


async def main():
    configure_logging("WARNING")
    async with UnifiedChatClient() as client:
        provider = sys.argv[1] if len(sys.argv) > 1 else client.default_provider
        try:
            await demo_chat(client, provider)
            await demo_stream(client, provider)
        except LLMGateError as e:
            console.print(f"[red]{type(e).__name__}: {e}")

        console.print("[bold cyan]\n=== Session ===")
        console.print(client.get_formatted_history())
        console.print(client.get_summary())


if __name__ == "__main__":
    asyncio.run(main())
