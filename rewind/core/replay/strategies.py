"""
Typing and clicking techniques.

Each technique is a small in-page script evaluated on the live element. A
technique reports whether it ran (``succeeded``) and whether the element shows
the expected text afterwards (``verified``); cascades move on until both hold.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import ElementHandle, Error as PlaywrightError

logger = logging.getLogger("rewind.strategies")

VERIFY_PREFIX_CHARS = 20


# ----------------------------------------------------------------------
# In-page scripts
# ----------------------------------------------------------------------

FOCUS_JS = """
(el) => {
    if (el.scrollIntoView) el.scrollIntoView({ block: 'center', inline: 'center' });
    if (el.focus) el.focus();
    return document.activeElement === el || el.contains(document.activeElement);
}
"""

# Shows display:none ancestors for the duration of an action.
REVEAL_JS = """
(el) => {
    const revealed = [];
    let node = el;
    while (node && node.nodeType === Node.ELEMENT_NODE) {
        if (window.getComputedStyle(node).display === 'none') {
            node.style.display = 'block';
            revealed.push(node);
        }
        node = node.parentElement;
    }
    window.__rewindRevealed = revealed;
    return revealed.length;
}
"""

RESTORE_JS = """
() => {
    for (const node of window.__rewindRevealed || []) node.style.display = 'none';
    window.__rewindRevealed = [];
}
"""

READ_SURFACE_TEXT_JS = """
(el) => {
    const surface = el.closest(
        '.monaco-editor, .cm-editor, .CodeMirror, .ace_editor, [contenteditable="true"], [contenteditable=""]'
    ) || el;
    if (surface.tagName === 'INPUT' || surface.tagName === 'TEXTAREA') return surface.value || '';
    return surface.innerText || surface.textContent || '';
}
"""

NATIVE_SET_VALUE_JS = """
(el, value) => {
    const view = el.ownerDocument.defaultView || window;
    const proto = el.tagName === 'TEXTAREA' ? view.HTMLTextAreaElement.prototype : view.HTMLInputElement.prototype;
    const setter = Object.getOwnPropertyDescriptor(proto, 'value')?.set;
    el.focus();
    if (setter) setter.call(el, value); else el.value = value;
    el.dispatchEvent(new InputEvent('input', { bubbles: true, data: value }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return el.value === value;
}
"""

SELECT_OPTION_JS = """
(el, value) => {
    const wanted = String(value ?? '').trim().toLowerCase();
    const options = Array.from(el.options || []);
    const option = options.find((o) => o.value === value)
        || options.find((o) => (o.text || '').trim().toLowerCase() === wanted);
    if (!option) return false;
    el.focus();
    el.value = option.value;
    option.selected = true;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return el.value === option.value;
}
"""

EXEC_COMMAND_JS = """
(el, value) => {
    el.focus();
    const editable = el.isContentEditable ? el : null;
    if (editable) {
        const range = document.createRange();
        range.selectNodeContents(editable);
        const selection = window.getSelection();
        selection.removeAllRanges();
        selection.addRange(range);
    }
    if (document.queryCommandSupported && !document.queryCommandSupported('insertText')) return false;
    return document.execCommand('insertText', false, value);
}
"""

CLIPBOARD_PASTE_JS = """
(el, value) => {
    el.focus();
    el.dispatchEvent(new KeyboardEvent('keydown', {
        key: 'v', code: 'KeyV', keyCode: 86, which: 86, ctrlKey: true, bubbles: true, cancelable: true,
    }));
    const data = new DataTransfer();
    data.setData('text/plain', value);
    el.dispatchEvent(new ClipboardEvent('paste', { bubbles: true, cancelable: true, clipboardData: data }));
    return true;
}
"""

SELECTION_RANGE_JS = """
(el, value) => {
    const editable = el.isContentEditable ? el : el.closest('[contenteditable="true"], [contenteditable=""]');
    if (!editable) return false;
    editable.focus();
    const selection = window.getSelection();
    if (selection && selection.rangeCount > 0 && editable.contains(selection.getRangeAt(0).startContainer)) {
        const range = selection.getRangeAt(0);
        range.deleteContents();
        const text = document.createTextNode(value);
        range.insertNode(text);
        range.setStartAfter(text);
        range.setEndAfter(text);
        selection.removeAllRanges();
        selection.addRange(range);
    } else {
        editable.textContent = (editable.textContent || '') + value;
    }
    editable.dispatchEvent(new InputEvent('input', {
        data: value, inputType: 'insertText', bubbles: true, cancelable: true,
    }));
    return true;
}
"""

CHAR_EVENTS_JS = """
async (el, value) => {
    el.focus();
    for (const char of value) {
        el.dispatchEvent(new InputEvent('beforeinput', {
            data: char, inputType: 'insertText', bubbles: true, cancelable: true,
        }));
        el.dispatchEvent(new InputEvent('input', {
            data: char, inputType: 'insertText', bubbles: true, cancelable: true,
        }));
        await new Promise((r) => setTimeout(r, 10));
    }
    return true;
}
"""

TEXT_CONTENT_JS = """
(el, value) => {
    el.focus();
    el.textContent = value;
    el.dispatchEvent(new InputEvent('input', { bubbles: true, data: value }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}
"""

DIRECT_VALUE_JS = """
(el, value) => {
    if (el.tagName !== 'INPUT' && el.tagName !== 'TEXTAREA') return false;
    el.focus();
    el.value = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}
"""

# Terminal emulators listen to keydown only; extra keypress/input events
# produce doubled characters.
TERMINAL_KEYS_JS = """
async (el, { value, delayMs }) => {
    el.focus();
    await new Promise((r) => setTimeout(r, 50));
    for (const char of value) {
        const keyCode = char.charCodeAt(0);
        const code = char === ' ' ? 'Space' : char === '\\n' ? 'Enter' : `Key${char.toUpperCase()}`;
        el.dispatchEvent(new KeyboardEvent('keydown', {
            key: char, code, keyCode, which: keyCode, bubbles: true, cancelable: true,
        }));
        await new Promise((r) => setTimeout(r, delayMs));
    }
    return true;
}
"""

ENTER_KEYS_JS = """
(el) => {
    for (const type of ['keydown', 'keypress', 'keyup']) {
        el.dispatchEvent(new KeyboardEvent(type, {
            key: 'Enter', code: 'Enter', keyCode: 13, which: 13, bubbles: true, cancelable: true,
        }));
    }
    return true;
}
"""

POINTER_CLICK_JS = """
(el) => {
    if (el.scrollIntoView) el.scrollIntoView({ block: 'center', inline: 'center' });
    const r = el.getBoundingClientRect();
    const init = {
        bubbles: true, cancelable: true, composed: true, view: window,
        clientX: r.left + r.width / 2, clientY: r.top + r.height / 2, button: 0,
    };
    for (const type of ['mouseover', 'mousemove', 'mousedown', 'mouseup', 'click']) {
        el.dispatchEvent(new MouseEvent(type, init));
    }
    return true;
}
"""

ARIA_OPTION_CLICK_JS = """
(el, value) => {
    const normalize = (s) => String(s || '').replace(/\\s+/g, ' ').trim().toLowerCase();
    const roleTarget = el.closest('[role="radio"], [role="checkbox"]');
    if (!roleTarget) return false;
    const group = roleTarget.closest('[role="list"], [role="radiogroup"], [role="group"]') || roleTarget.parentElement;
    const options = Array.from(group.querySelectorAll('[role="radio"], [role="checkbox"]'));
    const wanted = normalize(value);
    const option = options.find((o) => normalize(o.getAttribute('aria-label') || o.textContent) === wanted);
    if (!option) return false;
    option.scrollIntoView({ block: 'center' });
    const r = option.getBoundingClientRect();
    const init = {
        bubbles: true, cancelable: true, composed: true, view: window,
        clientX: r.left + r.width / 2, clientY: r.top + r.height / 2, button: 0,
    };
    for (const type of ['mouseover', 'mousemove', 'mousedown', 'mouseup', 'click']) {
        option.dispatchEvent(new MouseEvent(type, init));
    }
    return true;
}
"""


# ----------------------------------------------------------------------
# Technique plumbing
# ----------------------------------------------------------------------

@dataclass
class StrategyOutcome:
    succeeded: bool
    verified: bool = False

    @property
    def accepted(self) -> bool:
        return self.succeeded and self.verified


@dataclass
class StrategyContext:
    handle: ElementHandle
    value: str = ""
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    settle_ms: int = 100
    paste_verify_ms: int = 200
    terminal_key_delay_ms: int = 30

    async def settle(self, ms: Optional[int] = None) -> None:
        await self.sleep((self.settle_ms if ms is None else ms) / 1000)


@dataclass(frozen=True)
class TypingStrategy:
    name: str
    attempt: Callable[[StrategyContext], Awaitable[StrategyOutcome]]


async def read_surface_text(handle: ElementHandle) -> str:
    return str(await handle.evaluate(READ_SURFACE_TEXT_JS) or "")


async def verify_text(ctx: StrategyContext) -> bool:
    """The editing surface contains the start of the typed value."""
    expected = ctx.value[:VERIFY_PREFIX_CHARS]
    if not expected:
        return True
    return expected in await read_surface_text(ctx.handle)


def _script_technique(script: str, verify: bool, settle_ms: Optional[int] = None):
    async def attempt(ctx: StrategyContext) -> StrategyOutcome:
        ran = bool(await ctx.handle.evaluate(script, ctx.value))
        if not ran:
            return StrategyOutcome(succeeded=False)
        if not verify:
            return StrategyOutcome(succeeded=True, verified=True)
        await ctx.settle(settle_ms)
        return StrategyOutcome(succeeded=True, verified=await verify_text(ctx))
    return attempt


async def terminal_keys(ctx: StrategyContext) -> StrategyOutcome:
    ran = bool(
        await ctx.handle.evaluate(
            TERMINAL_KEYS_JS, {"value": ctx.value, "delayMs": ctx.terminal_key_delay_ms}
        )
    )
    # Terminal output is canvas-rendered and cannot be read back.
    return StrategyOutcome(succeeded=ran, verified=ran)


async def clipboard_paste(ctx: StrategyContext) -> StrategyOutcome:
    ran = bool(await ctx.handle.evaluate(CLIPBOARD_PASTE_JS, ctx.value))
    if not ran:
        return StrategyOutcome(succeeded=False)
    await ctx.settle(ctx.paste_verify_ms)
    return StrategyOutcome(succeeded=True, verified=await verify_text(ctx))


NATIVE_VALUE = TypingStrategy("native_value", _script_technique(NATIVE_SET_VALUE_JS, verify=False))
SELECT_OPTION = TypingStrategy("select_option", _script_technique(SELECT_OPTION_JS, verify=False))
EXEC_COMMAND = TypingStrategy("exec_command", _script_technique(EXEC_COMMAND_JS, verify=True))
CLIPBOARD_PASTE = TypingStrategy("clipboard_paste", clipboard_paste)
SELECTION_RANGE = TypingStrategy("selection_range", _script_technique(SELECTION_RANGE_JS, verify=True))
CHAR_EVENTS = TypingStrategy("char_events", _script_technique(CHAR_EVENTS_JS, verify=True))
TEXT_CONTENT = TypingStrategy("text_content", _script_technique(TEXT_CONTENT_JS, verify=True))
DIRECT_VALUE = TypingStrategy("direct_value", _script_technique(DIRECT_VALUE_JS, verify=False))
TERMINAL_KEYS = TypingStrategy("terminal_keys", terminal_keys)

NATIVE_CASCADE = (NATIVE_VALUE, DIRECT_VALUE)
SELECT_CASCADE = (SELECT_OPTION,)
CONTENTEDITABLE_CASCADE = (EXEC_COMMAND, SELECTION_RANGE, CHAR_EVENTS, TEXT_CONTENT)
COMPLEX_EDITOR_CASCADE = (EXEC_COMMAND, CLIPBOARD_PASTE, SELECTION_RANGE, CHAR_EVENTS, DIRECT_VALUE)
TERMINAL_CASCADE = (TERMINAL_KEYS,)
GENERIC_CASCADE = (TEXT_CONTENT,)


async def run_cascade(
    cascade: tuple[TypingStrategy, ...],
    ctx: StrategyContext,
) -> tuple[Optional[str], list[str]]:
    """
    Try techniques in order until one succeeds and verifies.

    Returns:
        (winning technique name or None, names of every technique tried)
    """
    attempts: list[str] = []
    for strategy in cascade:
        attempts.append(strategy.name)
        try:
            outcome = await strategy.attempt(ctx)
        except PlaywrightError as e:
            logger.debug(f"[Strategies] {strategy.name} raised: {e}")
            continue
        if outcome.accepted:
            return strategy.name, attempts
        logger.debug(
            f"[Strategies] {strategy.name} succeeded={outcome.succeeded} verified={outcome.verified}"
        )
    return None, attempts


async def evaluate_quietly(handle: ElementHandle, script: str, arg: Any = None) -> Any:
    """Evaluate a helper script, logging and swallowing Playwright errors."""
    try:
        if arg is None:
            return await handle.evaluate(script)
        return await handle.evaluate(script, arg)
    except PlaywrightError as e:
        logger.debug(f"[Strategies] helper script failed: {e}")
        return None
