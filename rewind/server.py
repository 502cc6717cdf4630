"""
Rewind - MCP Server Entry Point

Exposes recording and replay as Model Context Protocol tools, so an agent or
a UI bridge can record a workflow on a live page and replay it later.

Tools exposed:
- navigate: Open a URL
- start_recording / stop_recording: Capture interactions as steps
- run_step: Replay one recorded step
- replay: Replay a list of steps in order
- find_element: Resolve a recorded bundle without acting on it
- poll_and_click: Click matching buttons until idle
- stop: Stop a running replay
- page_info: Current page state
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from rewind.core.browser import BrowserConfig, RewindBrowser
from rewind.core.engine import EngineConfig
from rewind.core.models import Bundle
from rewind.core.notifications import JsonlStepEventSink, NullStepEventSink, StepEventSink

# Configure logging
logging.basicConfig(
    level=os.getenv("REWIND_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)]
)
logger = logging.getLogger("rewind.server")

# Global browser instance
_browser: RewindBrowser | None = None


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def get_browser_config() -> BrowserConfig:
    """Get browser configuration from environment variables."""
    return BrowserConfig(
        headless=_env_flag("REWIND_HEADLESS", "true"),
        viewport_width=int(os.getenv("REWIND_VIEWPORT_WIDTH", "1920")),
        viewport_height=int(os.getenv("REWIND_VIEWPORT_HEIGHT", "1080")),
        user_agent=os.getenv("REWIND_USER_AGENT"),
        default_timeout=int(os.getenv("REWIND_DEFAULT_TIMEOUT_MS", "30000")),
        intercept_closed_shadow=_env_flag("REWIND_INTERCEPT_CLOSED_SHADOW", "true"),
    )


def get_engine_config() -> EngineConfig:
    """Get replay timing from environment variables."""
    seed = os.getenv("REWIND_SEED")
    return EngineConfig(
        settle_delay_ms=int(os.getenv("REWIND_SETTLE_DELAY_MS", "500")),
        settle_jitter_ms=int(os.getenv("REWIND_SETTLE_JITTER_MS", "500")),
        seed=int(seed) if seed else None,
        find_timeout_ms=int(os.getenv("REWIND_FIND_TIMEOUT_MS", "2000")),
        continue_on_error=_env_flag("REWIND_CONTINUE_ON_ERROR", "false"),
    )


def get_event_sink() -> StepEventSink:
    events_dir = os.getenv("REWIND_EVENTS_DIR")
    return JsonlStepEventSink(events_dir) if events_dir else NullStepEventSink()


async def get_browser() -> RewindBrowser:
    """Get or create the global browser instance."""
    global _browser

    if _browser is None:
        _browser = RewindBrowser(get_browser_config(), engine_config=get_engine_config(), sink=get_event_sink())
        await _browser.initialize()
        logger.info("[Server] Browser initialized")

    return _browser


async def cleanup_browser() -> None:
    """Cleanup the global browser instance."""
    global _browser

    if _browser is not None:
        await _browser.close()
        _browser = None
        logger.info("[Server] Browser closed")


def json_content(payload: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


STEP_SCHEMA = {
    "type": "object",
    "description": "Recorded step: event, bundle, value, label",
    "properties": {
        "event": {"type": "string", "enum": ["click", "input", "enter", "open", "conditional"]},
        "bundle": {"type": "object"},
        "value": {"type": "string"},
        "label": {"type": "string"},
    },
    "required": ["event"],
}

# Create MCP Server
server = Server("rewind")


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="navigate",
            description="Navigate to a URL.",
            inputSchema={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "The URL to navigate to"},
                    "wait_until": {
                        "type": "string",
                        "enum": ["load", "domcontentloaded", "networkidle"],
                        "default": "domcontentloaded"
                    }
                },
                "required": ["url"]
            }
        ),
        Tool(
            name="start_recording",
            description="""Start recording user interactions on the current page.

Clicks, typed values and Enter presses are captured as labelled steps with a
fingerprint bundle of the target element. Returns the initial open step.""",
            inputSchema={"type": "object", "properties": {}, "required": []}
        ),
        Tool(
            name="stop_recording",
            description="Stop recording and return every recorded step.",
            inputSchema={"type": "object", "properties": {}, "required": []}
        ),
        Tool(
            name="run_step",
            description="""Replay a single recorded step.

The element is re-located with the resolver cascade (xpath, id, name, aria,
placeholder, fuzzy text, bounding box, editor shape, coordinates) and the
action applied with the typing cascade for its widget type.""",
            inputSchema={
                "type": "object",
                "properties": {
                    "step": STEP_SCHEMA,
                    "index": {"type": "integer", "description": "Step position echoed in notifications"}
                },
                "required": ["step"]
            }
        ),
        Tool(
            name="replay",
            description="Replay recorded steps in order. Stops at the first failure unless continue_on_error.",
            inputSchema={
                "type": "object",
                "properties": {
                    "steps": {"type": "array", "items": STEP_SCHEMA},
                    "continue_on_error": {"type": "boolean", "default": False}
                },
                "required": ["steps"]
            }
        ),
        Tool(
            name="find_element",
            description="Resolve a recorded bundle on the current page without acting on it.",
            inputSchema={
                "type": "object",
                "properties": {
                    "bundle": {"type": "object"},
                    "timeout_ms": {"type": "integer", "default": 2000}
                },
                "required": ["bundle"]
            }
        ),
        Tool(
            name="poll_and_click",
            description="""Click buttons whose text contains one of the search terms until no
click has happened for timeout_seconds.""",
            inputSchema={
                "type": "object",
                "properties": {
                    "search_terms": {"type": "array", "items": {"type": "string"}, "default": ["Allow", "Keep"]},
                    "timeout_seconds": {"type": "number", "default": 120},
                    "poll_interval_ms": {"type": "integer", "default": 1000}
                },
                "required": []
            }
        ),
        Tool(
            name="stop",
            description="Stop a running replay or poll.",
            inputSchema={"type": "object", "properties": {}, "required": []}
        ),
        Tool(
            name="page_info",
            description="Get current page information (URL, title, frames, recording state).",
            inputSchema={"type": "object", "properties": {}, "required": []}
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    logger.info(f"[Server] Tool called: {name}")

    try:
        browser = await get_browser()

        if name == "navigate":
            success = await browser.navigate(arguments["url"], wait_until=arguments.get("wait_until", "domcontentloaded"))
            return json_content({"success": success, "page": await browser.get_page_info()})

        elif name == "start_recording":
            step = await browser.start_recording()
            return json_content({"recording": True, "step": step.to_dict()})

        elif name == "stop_recording":
            steps = await browser.stop_recording()
            return json_content({"recording": False, "steps": [step.to_dict() for step in steps]})

        elif name == "run_step":
            result = await browser.engine.run_step(arguments["step"], arguments.get("index"))
            return json_content(result.to_dict())

        elif name == "replay":
            results = await browser.engine.replay(arguments["steps"], arguments.get("continue_on_error"))
            return json_content({
                "success": all(result.success for result in results) and len(results) == len(arguments["steps"]),
                "results": [result.to_dict() for result in results],
            })

        elif name == "find_element":
            bundle = Bundle.from_dict(arguments["bundle"])
            resolution = await browser.engine.find_element(bundle, arguments.get("timeout_ms"))
            if resolution is None:
                return json_content({"found": False, "failure_code": "NOT_FOUND"})
            return json_content({
                "found": True,
                "strategy": resolution.strategy,
                "score": resolution.score,
                "low_confidence": resolution.low_confidence,
                "warnings": resolution.warnings,
                "element": resolution.node.to_debug_string(),
            })

        elif name == "poll_and_click":
            terms = arguments.get("search_terms")
            poll = await browser.engine.poll_and_click(
                tuple(terms) if terms else None,
                arguments.get("timeout_seconds"),
                arguments.get("poll_interval_ms"),
            )
            return json_content(poll.to_dict())

        elif name == "stop":
            browser.engine.stop()
            return json_content({"stopped": True})

        elif name == "page_info":
            return json_content(await browser.get_page_info())

        else:
            return json_content({"error": f"Unknown tool: {name}"})

    except Exception as e:
        logger.exception(f"[Server] Error in tool {name}: {e}")
        return json_content({"error": str(e), "tool": name})


async def serve() -> None:
    """Run the MCP server over stdio."""
    logger.info("[Server] Starting Rewind MCP Server...")

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options()
            )
    finally:
        await cleanup_browser()


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(serve())


if __name__ == "__main__":
    main()
