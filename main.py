"""vooli - shopping assistant

Simple CLI for running one message through the pipeline.
"""

import argparse
import asyncio
import uuid

from vooli.agents.orchestrator import StageOrchestrator
from vooli.models.run import Run
from vooli.services.run_channel import RunMetadataChannel


async def print_progress(channel: RunMetadataChannel):
    """Print status changes and answer tokens as they arrive."""
    async for event in channel.subscribe():
        event_type = event.event.value
        data = event.data

        if event_type == "status":
            print(f"\n[~] {data.get('status')}")

        elif event_type == "entry":
            key = data.get("key")
            value = data.get("value")
            if key in ("sources", "products", "enriched_products"):
                print(f"  [+] {key}: {len(value or [])}")

        elif event_type == "token":
            print(data.get("token", ""), end="", flush=True)

        elif event_type == "complete":
            print()


async def run_message(message: str, chat_id: str | None = None):
    chat_id = chat_id or str(uuid.uuid4())
    print(f"Message: {message}")
    print("-" * 50)

    run = Run(chat_id=chat_id, message_text=message)
    channel = RunMetadataChannel(run.id)
    orchestrator = StageOrchestrator()

    printer = asyncio.create_task(print_progress(channel))
    await asyncio.sleep(0)  # let the printer subscribe before the first write
    answer = await orchestrator.execute(chat_id, message, run=run, channel=channel)
    await printer

    print(f"\n{'='*50}")
    print(f"Outcome: {answer.outcome.value}")
    print(f"Swallowed failures: {answer.diagnostics.to_dict()}")
    print(f"{'='*50}")
    print(answer.text)


def main():
    parser = argparse.ArgumentParser(description="vooli shopping assistant")
    parser.add_argument("--message", "-m", required=True, help="Shopping question")
    parser.add_argument("--chat-id", help="Chat to attach the run to (default: new id)")

    args = parser.parse_args()

    asyncio.run(run_message(args.message, args.chat_id))


if __name__ == "__main__":
    main()
