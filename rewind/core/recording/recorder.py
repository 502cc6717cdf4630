"""
Live recorder for a Playwright page.

An init script installs capture-phase listeners in every frame. Each trusted
interaction stashes its target under a per-element token and calls back into
Python through an exposed binding; the recorder then snapshots the page, maps
the token back to a snapshot node and forwards it to the RecordingSession.

The listeners drop events on scrollbars and resize handles, on hidden
elements and clicks on non-interactive elements. Repeated clicks or Enter
presses on the same spot within DEBOUNCE_MS count once. Inputs whose final
value is blank are not recorded.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError, Frame, Page

from rewind.core.dom.snapshot import SnapshotCapturer, node_for_handle
from rewind.core.dom.nodes import DomNode
from rewind.core.models import Step
from rewind.core.recording.session import RecordingSession

logger = logging.getLogger("rewind.recorder")

BINDING_NAME = "__rewindRecord"

# Event targets inside these never produce steps.
BLOCKED_SELECTORS = (
    '[class*="scrollbar"]',
    '[class*="Scrollbar"]',
    "[data-vscode-scrollbar]",
    ".slider",
    ".sash",
    ".monaco-sash",
    '[class*="resize"]',
    '[aria-hidden="true"]:not([role="button"]):not(button)',
)

INTERACTIVE_TAGS = ("button", "a", "input", "select", "textarea", "summary", "details", "label", "option")
INTERACTIVE_ROLES = (
    "button", "link", "menuitem", "tab", "option", "checkbox", "radio", "switch", "combobox", "textbox",
)

DEBOUNCE_MS = 50

RECORDER_JS = """
(() => {
    if (window.__rewindRecorderInstalled) return;
    window.__rewindRecorderInstalled = true;
    window.__rewindRecording = window.__rewindRecording ?? false;

    const BLOCKED = %(blocked)s;
    const INTERACTIVE_TAGS = %(tags)s;
    const INTERACTIVE_ROLES = %(roles)s;
    const DEBOUNCE_MS = %(debounce)d;
    const EDITOR_SELECTOR = '.xterm, .monaco-editor, .cm-editor';

    const tokens = new WeakMap();
    const targets = new Map();
    let nextToken = 1;
    let lastKey = '';
    let lastTime = 0;
    window.__rewindTargets = targets;

    const tokenFor = (el) => {
        let token = tokens.get(el);
        if (!token) {
            token = String(nextToken++);
            tokens.set(el, token);
        }
        targets.set(token, el);
        return token;
    };

    const realTarget = (event) => {
        const path = event.composedPath ? event.composedPath() : [];
        const first = path.find((n) => n && n.nodeType === Node.ELEMENT_NODE);
        return first || event.target;
    };

    const editableRoot = (el) => el.closest ? el.closest('[contenteditable=""], [contenteditable="true"]') : null;
    const inEditor = (el) => !!(el.closest && el.closest(EDITOR_SELECTOR));

    const isBlocked = (el) => BLOCKED.some((selector) => {
        try {
            return el.matches(selector) || !!el.closest(selector);
        } catch (e) {
            return false;
        }
    });

    const isVisible = (el) => {
        try {
            const s = getComputedStyle(el);
            return s.display !== 'none' && s.visibility !== 'hidden' && s.opacity !== '0'
                && el.offsetWidth > 0 && el.offsetHeight > 0;
        } catch (e) {
            return true;
        }
    };

    const isInteractive = (el) => {
        const tag = el.tagName.toLowerCase();
        const role = el.getAttribute('role') || '';
        if (INTERACTIVE_TAGS.includes(tag) || INTERACTIVE_ROLES.includes(role)) return true;
        if (el.hasAttribute('onclick') || el.hasAttribute('tabindex') || el.isContentEditable) return true;
        if (el.closest('button, a[href], [role="button"], [role="link"], [role="option"], [role="radio"], [role="checkbox"]')) return true;
        try {
            if (getComputedStyle(el).cursor === 'pointer') return true;
        } catch (e) {}
        return inEditor(el);
    };

    const debounced = (kind, el, event) => {
        const now = event.timeStamp || Date.now();
        const x = Math.round(event.clientX || 0);
        const y = Math.round(event.clientY || 0);
        const key = `${kind}:${el.tagName}:${el.id || ''}:${x}:${y}`;
        const duplicate = key === lastKey && now - lastTime < DEBOUNCE_MS;
        lastKey = key;
        lastTime = now;
        return duplicate;
    };

    const recordable = (kind, el, event) => {
        if (!el || !el.tagName || isBlocked(el)) return false;
        if (!inEditor(el) && !isVisible(el)) return false;
        if (kind === 'click' && !isInteractive(el)) return false;
        // Coalescing handles repeated input events.
        return kind === 'input' || !debounced(kind, el, event);
    };

    const valueOf = (el) => {
        if ('value' in el && ['INPUT', 'TEXTAREA', 'SELECT'].includes(el.tagName)) return String(el.value ?? '');
        return el.innerText || el.textContent || '';
    };

    const send = (kind, el, event, value) => {
        if (!window.__rewindRecording || typeof window.__rewindRecord !== 'function') return;
        if (!recordable(kind, el, event)) return;
        window.__rewindRecord({
            kind,
            token: tokenFor(el),
            value: value ?? null,
            trusted: event.isTrusted,
        });
    };

    document.addEventListener('mousedown', (event) => {
        send('click', realTarget(event), event, null);
    }, true);

    document.addEventListener('input', (event) => {
        const target = realTarget(event);
        const el = ['INPUT', 'TEXTAREA'].includes(target.tagName) ? target : (editableRoot(target) || target);
        if (el.tagName === 'INPUT' && ['checkbox', 'radio'].includes(el.type)) return;
        send('input', el, event, valueOf(el));
    }, true);

    document.addEventListener('change', (event) => {
        const target = realTarget(event);
        if (target.tagName === 'SELECT') send('input', target, event, valueOf(target));
    }, true);

    document.addEventListener('keydown', (event) => {
        if (event.key !== 'Enter' || event.shiftKey) return;
        send('enter', realTarget(event), event, null);
    }, true);
})();
""" % {
    "blocked": json.dumps(list(BLOCKED_SELECTORS)),
    "tags": json.dumps(list(INTERACTIVE_TAGS)),
    "roles": json.dumps(list(INTERACTIVE_ROLES)),
    "debounce": DEBOUNCE_MS,
}

SET_RECORDING_JS = "(flag) => { window.__rewindRecording = flag; }"

TAKE_TARGET_JS = """
(token) => {
    const targets = window.__rewindTargets;
    if (!targets) return null;
    const el = targets.get(token) || null;
    targets.delete(token);
    return el;
}
"""


@dataclass
class _PendingInput:
    frame: Frame
    token: str
    value: str


class PageRecorder:
    """
    Records user interactions on a page into a RecordingSession.

    Consecutive input events on the same element are coalesced into one input
    step holding the final value.
    """

    def __init__(
        self,
        page: Page,
        session: Optional[RecordingSession] = None,
        capturer: Optional[SnapshotCapturer] = None,
    ) -> None:
        self.page = page
        self.session = session or RecordingSession()
        self._capturer = capturer or SnapshotCapturer()
        self._pending: Optional[_PendingInput] = None
        self._lock = asyncio.Lock()
        self._installed = False

    @property
    def is_recording(self) -> bool:
        return self.session.is_recording

    async def start(self) -> Step:
        """Install listeners (once per page) and begin a fresh session."""
        if not self._installed:
            await self.page.expose_binding(BINDING_NAME, self._on_binding)
            await self.page.add_init_script(RECORDER_JS)
            self._installed = True
        await self._for_each_frame(RECORDER_JS)
        await self._for_each_frame(SET_RECORDING_JS, True)
        step = self.session.start(self.page.url)
        logger.info(f"[Recorder] Recording {self.page.url}")
        return step

    async def stop(self) -> list[Step]:
        async with self._lock:
            await self._flush_pending()
        await self._for_each_frame(SET_RECORDING_JS, False)
        return self.session.stop()

    async def _for_each_frame(self, script: str, arg: Any = None) -> None:
        for frame in self.page.frames:
            try:
                if arg is None:
                    await frame.evaluate(script)
                else:
                    await frame.evaluate(script, arg)
            except PlaywrightError as e:
                logger.debug(f"[Recorder] Skipping frame {frame.url}: {e}")

    async def _on_binding(self, source: dict[str, Any], payload: dict[str, Any]) -> None:
        frame = source.get("frame")
        async with self._lock:
            await self.handle_event(frame, payload)

    async def handle_event(self, frame: Frame, payload: dict[str, Any]) -> Optional[Step]:
        """
        Apply one listener payload (``kind``, ``token``, ``value``, ``trusted``).

        Returns the step recorded as a direct result of this event, if any.
        """
        if not self.session.is_recording:
            return None
        if not payload.get("trusted", False):
            logger.debug(f"[Recorder] Ignoring synthetic {payload.get('kind')} event")
            return None

        kind = payload.get("kind")
        token = str(payload.get("token"))

        if kind == "input":
            if self._pending is not None and (self._pending.token != token or self._pending.frame is not frame):
                await self._flush_pending()
            self._pending = _PendingInput(frame=frame, token=token, value=payload.get("value") or "")
            return None

        flushed = await self._flush_pending()
        if kind == "click":
            target = await self._take_target(frame, token)
            return self.session.record_click(target) if target is not None else None
        if kind == "enter":
            target = await self._take_target(frame, token)
            return self.session.record_enter(target) if target is not None else None

        logger.warning(f"[Recorder] Unknown event kind: {kind!r}")
        return flushed

    async def _flush_pending(self) -> Optional[Step]:
        pending, self._pending = self._pending, None
        if pending is None:
            return None
        if not pending.value.strip():
            logger.debug(f"[Recorder] Skipping empty input on target {pending.token}")
            return None
        target = await self._take_target(pending.frame, pending.token)
        if target is None:
            return None
        return self.session.record_input(target, pending.value)

    async def _take_target(self, frame: Frame, token: str) -> Optional[DomNode]:
        try:
            handle = await frame.evaluate_handle(TAKE_TARGET_JS, token)
            element = handle.as_element()
            if element is None:
                logger.warning(f"[Recorder] Target {token} is gone")
                return None
            document = await self._capturer.capture(self.page)
            node = await node_for_handle(document, element)
        except PlaywrightError as e:
            logger.warning(f"[Recorder] Could not locate target {token}: {e}")
            return None
        if node is None:
            logger.warning(f"[Recorder] Target {token} not found in snapshot")
        return node
