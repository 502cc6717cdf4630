"""
Example usage of Rewind.

Records a short interaction on a live page (headed browser, you click and
type), then replays the recorded steps on a fresh load of the same page and
prints the outcome of every step.
"""

import asyncio
import json
import logging

from rewind.core.browser import BrowserConfig, RewindBrowser
from rewind.core.engine import EngineConfig
from rewind.core.notifications import CallbackStepEventSink

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


def print_event(event: dict) -> None:
    print(f"  [{event['status']:>7}] step {event['step']} {event.get('label') or event['event']}")


async def record(url: str, seconds: int = 20) -> list[dict]:
    print("\n" + "="*60)
    print(f"Recording on {url} for {seconds}s - interact with the page")
    print("="*60)

    async with RewindBrowser(BrowserConfig(headless=False)).session() as browser:
        await browser.navigate(url)
        await browser.start_recording()
        await asyncio.sleep(seconds)
        steps = await browser.stop_recording()

    print(f"\nRecorded {len(steps)} steps")
    return [step.to_dict() for step in steps]


async def replay(steps: list[dict]) -> None:
    print("\n" + "="*60)
    print("Replaying")
    print("="*60)

    browser = RewindBrowser(
        BrowserConfig(headless=False),
        engine_config=EngineConfig(continue_on_error=True),
        sink=CallbackStepEventSink(print_event),
    )
    async with browser.session():
        results = await browser.engine.replay(steps)

    for result in results:
        print(json.dumps(result.to_dict(), default=str))


async def main():
    steps = await record("https://duckduckgo.com")
    await replay(steps)


if __name__ == "__main__":
    asyncio.run(main())
