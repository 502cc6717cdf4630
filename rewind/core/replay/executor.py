"""
Action Executor.

Applies click, input and enter actions to a resolved snapshot node. The live
element is re-acquired right before acting; input goes through a technique
cascade chosen by widget category.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from playwright.async_api import ElementHandle, Error as PlaywrightError

from rewind.core.dom.nodes import DomNode
from rewind.core.dom.snapshot import element_handle
from rewind.core.models import Action, ActionOutcome, ActionType, Bundle, FailureCode
from rewind.core.replay import strategies
from rewind.core.replay.editors import EditorKind, editor_kind, find_terminal_input
from rewind.core.replay.strategies import StrategyContext, TypingStrategy, run_cascade

logger = logging.getLogger("rewind.executor")

HandleFactory = Callable[[DomNode], Awaitable[Optional[ElementHandle]]]

NON_TEXT_INPUT_TYPES = frozenset({"checkbox", "radio", "button", "submit", "reset", "file", "image"})


class InputCategory(str, Enum):
    TERMINAL = "terminal"
    COMPLEX_EDITOR = "complex_editor"
    NATIVE = "native"
    SELECT = "select"
    CONTENTEDITABLE = "contenteditable"
    GENERIC = "generic"


CASCADES: dict[InputCategory, tuple[TypingStrategy, ...]] = {
    InputCategory.TERMINAL: strategies.TERMINAL_CASCADE,
    InputCategory.COMPLEX_EDITOR: strategies.COMPLEX_EDITOR_CASCADE,
    InputCategory.NATIVE: strategies.NATIVE_CASCADE,
    InputCategory.SELECT: strategies.SELECT_CASCADE,
    InputCategory.CONTENTEDITABLE: strategies.CONTENTEDITABLE_CASCADE,
    InputCategory.GENERIC: strategies.GENERIC_CASCADE,
}


@dataclass(frozen=True)
class ExecutorConfig:
    settle_ms: int = 100
    paste_verify_ms: int = 200
    terminal_key_delay_ms: int = 30
    reveal_hidden_ancestors: bool = True


def input_category(node: DomNode, bundle: Optional[Bundle] = None) -> InputCategory:
    """Pick the typing cascade for an element."""
    kind = editor_kind(node)
    hints = bundle.context_hints if bundle is not None else None
    if kind == EditorKind.TERMINAL or (hints is not None and hints.is_terminal):
        return InputCategory.TERMINAL
    if kind in (EditorKind.CODE_EDITOR, EditorKind.RICH_TEXT):
        return InputCategory.COMPLEX_EDITOR
    if hints is not None and (hints.is_code_editor or bundle.recorded_via in ("keyboard", "vision")):
        return InputCategory.COMPLEX_EDITOR
    if node.tag == "textarea" or (node.tag == "input" and node.input_type not in NON_TEXT_INPUT_TYPES):
        return InputCategory.NATIVE
    if node.tag == "select":
        return InputCategory.SELECT
    if node.is_content_editable:
        return InputCategory.CONTENTEDITABLE
    return InputCategory.GENERIC


class ActionExecutor:
    """
    Executes one Action against one resolved node.

    Playwright errors inside a technique count as an unverified attempt; the
    action only fails once every technique of its cascade has been tried.
    """

    def __init__(
        self,
        config: Optional[ExecutorConfig] = None,
        handle_factory: HandleFactory = element_handle,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or ExecutorConfig()
        self._handle_factory = handle_factory
        self._sleep = sleep

    async def execute_action(
        self,
        node: DomNode,
        action: Action,
        bundle: Optional[Bundle] = None,
    ) -> ActionOutcome:
        """
        Apply an action to a node.

        Args:
            node: Resolved snapshot node
            action: click, input or enter with optional value
            bundle: Recorded bundle, used for editor hints

        Returns:
            ActionOutcome with the winning technique and every technique tried
        """
        target = self._typing_target(node, bundle) if action.type != ActionType.CLICK else node
        handle = await self._handle_factory(target)
        if handle is None:
            logger.warning(f"[Executor] Live element unavailable for {target.to_debug_string()}")
            return ActionOutcome(success=False, failure_code=FailureCode.ACTION_FAILED)

        revealed = False
        if self.config.reveal_hidden_ancestors and not target.visible:
            revealed = bool(await strategies.evaluate_quietly(handle, strategies.REVEAL_JS))
        try:
            if action.type == ActionType.CLICK:
                outcome = await self._click(handle, target, action.value)
            elif action.type == ActionType.INPUT:
                outcome = await self._type(handle, target, action.value or "", bundle)
            else:
                outcome = await self._enter(handle, target, action.value, bundle)
        finally:
            if revealed:
                await strategies.evaluate_quietly(handle, strategies.RESTORE_JS)

        if outcome.success:
            logger.info(f"[Executor] ✓ {action.type.value} via {outcome.technique}")
        else:
            logger.warning(f"[Executor] {action.type.value} failed after {outcome.attempts}")
            outcome.failure_code = FailureCode.ACTION_FAILED
        return outcome

    def _typing_target(self, node: DomNode, bundle: Optional[Bundle]) -> DomNode:
        if input_category(node, bundle) != InputCategory.TERMINAL:
            return node
        document = node.owner_document()
        helper = find_terminal_input(document) if document is not None else None
        return helper or node

    def _context(self, handle: ElementHandle, value: str) -> StrategyContext:
        return StrategyContext(
            handle=handle,
            value=value,
            sleep=self._sleep,
            settle_ms=self.config.settle_ms,
            paste_verify_ms=self.config.paste_verify_ms,
            terminal_key_delay_ms=self.config.terminal_key_delay_ms,
        )

    # ------------------------------------------------------------------
    # Click
    # ------------------------------------------------------------------

    async def _click(self, handle: ElementHandle, node: DomNode, value: Optional[str]) -> ActionOutcome:
        attempts: list[str] = []

        if node.tag == "select":
            if not value:
                # Opening a select changes nothing; the change is its own step.
                await strategies.evaluate_quietly(handle, strategies.FOCUS_JS)
                return ActionOutcome(success=True, technique="focus", attempts=["focus"])
            technique, tried = await run_cascade(strategies.SELECT_CASCADE, self._context(handle, value))
            return ActionOutcome(success=technique is not None, technique=technique, attempts=tried)

        if value and node.closest(lambda n: n.role in ("radio", "checkbox")) is not None:
            attempts.append("aria_option")
            if await strategies.evaluate_quietly(handle, strategies.ARIA_OPTION_CLICK_JS, value):
                return ActionOutcome(success=True, technique="aria_option", attempts=attempts)

        attempts.append("pointer_sequence")
        if await strategies.evaluate_quietly(handle, strategies.POINTER_CLICK_JS):
            return ActionOutcome(success=True, technique="pointer_sequence", attempts=attempts)

        attempts.append("playwright_click")
        try:
            await handle.click(force=True, timeout=2000)
            return ActionOutcome(success=True, technique="playwright_click", attempts=attempts)
        except PlaywrightError as e:
            logger.debug(f"[Executor] playwright click failed: {e}")
        return ActionOutcome(success=False, attempts=attempts)

    # ------------------------------------------------------------------
    # Input / Enter
    # ------------------------------------------------------------------

    async def _type(
        self,
        handle: ElementHandle,
        node: DomNode,
        value: str,
        bundle: Optional[Bundle],
    ) -> ActionOutcome:
        category = input_category(node, bundle)
        logger.debug(f"[Executor] Typing into {node.to_debug_string()} as {category.value}")
        await strategies.evaluate_quietly(handle, strategies.FOCUS_JS)
        technique, attempts = await run_cascade(CASCADES[category], self._context(handle, value))
        return ActionOutcome(success=technique is not None, technique=technique, attempts=attempts)

    async def _enter(
        self,
        handle: ElementHandle,
        node: DomNode,
        value: Optional[str],
        bundle: Optional[Bundle],
    ) -> ActionOutcome:
        attempts: list[str] = []
        technique = "enter_keys"
        if value:
            typed = await self._type(handle, node, value, bundle)
            attempts.extend(typed.attempts)
            if not typed.success:
                return ActionOutcome(success=False, attempts=attempts)
            await self._sleep(self.config.settle_ms / 1000)
            technique = f"{typed.technique}+enter_keys"

        attempts.append("enter_keys")
        if not await strategies.evaluate_quietly(handle, strategies.ENTER_KEYS_JS):
            return ActionOutcome(success=False, attempts=attempts)

        if node.tag == "button":
            attempts.append("pointer_sequence")
            await strategies.evaluate_quietly(handle, strategies.POINTER_CLICK_JS)
        return ActionOutcome(success=True, technique=technique, attempts=attempts)
