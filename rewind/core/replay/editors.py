"""
Complex editor detection.

Code editors, terminal emulators and rich-text frameworks keep their text in
JavaScript state rather than in a form value, so they need their own recording
labels and typing techniques.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from rewind.core.dom.nodes import DomNode
from rewind.core.models import ContextHints


class EditorKind(str, Enum):
    TERMINAL = "terminal"
    CODE_EDITOR = "code_editor"
    RICH_TEXT = "rich_text"


TERMINAL_CLASSES = ("xterm", "terminal")
CODE_EDITOR_CLASSES = (
    "monaco-editor",
    "monaco-mouse-cursor-text",
    "CodeMirror",
    "cm-editor",
    "cm-content",
    "ace_editor",
    "ace_text-input",
)
RICH_TEXT_CLASSES = ("ProseMirror", "ql-editor", "mce-content-body")


def _is_terminal_container(node: DomNode) -> bool:
    return node.has_class(*TERMINAL_CLASSES) or "data-terminal" in node.attributes


def _is_code_editor_container(node: DomNode) -> bool:
    return node.has_class(*CODE_EDITOR_CLASSES) or node.get("data-mprt") == "7"


def _is_rich_text_container(node: DomNode) -> bool:
    if node.has_class(*RICH_TEXT_CLASSES):
        return True
    if node.get("data-qa") == "message_input" or node.class_contains("slateTextArea"):
        return True
    return False


def editor_kind(node: Optional[DomNode]) -> Optional[EditorKind]:
    """Classify the editor an element belongs to, or None for plain widgets."""
    if node is None or not node.is_element:
        return None
    if node.closest(_is_terminal_container) is not None:
        return EditorKind.TERMINAL
    if node.closest(_is_code_editor_container) is not None:
        return EditorKind.CODE_EDITOR
    if node.closest(_is_rich_text_container) is not None:
        return EditorKind.RICH_TEXT
    if node.get("contenteditable") == "true" and node.closest(lambda n: n.class_contains("editor")):
        return EditorKind.RICH_TEXT
    return None


def is_complex_editor(node: Optional[DomNode]) -> bool:
    return editor_kind(node) is not None


def context_hints(node: DomNode) -> ContextHints:
    kind = editor_kind(node)
    return ContextHints(
        is_terminal=kind == EditorKind.TERMINAL,
        is_code_editor=kind == EditorKind.CODE_EDITOR,
        is_rich_text=kind == EditorKind.RICH_TEXT or (kind is None and node.is_content_editable),
    )


def _is_terminal_input(node: DomNode) -> bool:
    if node.tag != "textarea":
        return False
    if node.has_class("xterm-helper-textarea"):
        return True
    return node.closest(lambda n: n.class_contains("xterm")) is not None


def _is_code_editor_input(node: DomNode) -> bool:
    if node.tag == "textarea" and (node.has_class("inputarea", "ace_text-input")
                                   or node.closest(lambda n: n.has_class("monaco-editor")) is not None):
        return True
    return node.has_class("cm-content") and node.is_content_editable


def find_terminal_input(root: DomNode) -> Optional[DomNode]:
    """Hidden helper textarea of the first terminal emulator in root."""
    helper = root.query(lambda n: n.tag == "textarea" and n.has_class("xterm-helper-textarea"))
    return helper or root.query(_is_terminal_input)


def find_code_editor_input(root: DomNode) -> Optional[DomNode]:
    """Input surface of the first code editor in root."""
    return root.query(_is_code_editor_input)
