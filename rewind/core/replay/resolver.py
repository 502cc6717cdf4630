"""
Element Resolver.

Re-locates a recorded element on the current page. The boundary chain is
walked first, then a cascade of strategies runs from the most to the least
specific, stopping at the first hit:

    xpath -> id (scored) -> closed-shadow host -> name -> aria -> placeholder
    -> id fallback -> fuzzy text -> bounding rect -> editor shape
    -> coordinates -> data attributes

All strategies are pure functions of a snapshot, so resolving the same bundle
against the same snapshot always yields the same node.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError

from rewind.core.dom.nodes import Document, DomNode, NullShadowRootLookup, ShadowRootLookup
from rewind.core.dom.xpath import evaluate_xpath
from rewind.core.models import Bundle, Resolution
from rewind.core.recording.boundary import BoundaryContext, descend
from rewind.core.replay.editors import find_code_editor_input, find_terminal_input
from rewind.core.replay.scoring import break_tie, candidate_text, id_score, text_similarity

logger = logging.getLogger("rewind.resolver")

DocumentSource = Callable[[], Awaitable[Document]]

AMBIGUOUS_MATCH = "AmbiguousMatch"


@dataclass(frozen=True)
class ResolverConfig:
    timeout_ms: int = 2000
    retry_interval_ms: int = 150
    id_accept_score: int = 2
    id_rect_tolerance_px: float = 5.0
    fuzzy_collect_threshold: float = 0.4
    fuzzy_accept_threshold: float = 0.5
    rect_threshold_px: float = 200.0


class ElementResolver:
    """
    Cascading, scored element resolution over DOM snapshots.

    Closed shadow roots are only entered through the ShadowRootLookup; with the
    default NullShadowRootLookup they are treated as unreachable.
    """

    def __init__(
        self,
        lookup: Optional[ShadowRootLookup] = None,
        config: Optional[ResolverConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.lookup = lookup or NullShadowRootLookup()
        self.config = config or ResolverConfig()
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, bundle: Bundle, document: Document) -> Optional[Resolution]:
        """
        Resolve a bundle against one snapshot.

        Args:
            bundle: Recorded element fingerprint
            document: Top-level snapshot document

        Returns:
            Resolution naming the winning strategy, or None
        """
        context = descend(document, bundle.iframe_chain, bundle.shadow_hosts, self.lookup)
        resolution = self._cascade(bundle, context)
        if resolution is None:
            logger.debug(f"[Resolver] No match for {bundle.tag or '*'} {bundle.xpath}")
            return None
        resolution.warnings = context.warnings + resolution.warnings
        level = logging.WARNING if resolution.low_confidence else logging.DEBUG
        logger.log(
            level,
            f"[Resolver] {resolution.strategy} -> {resolution.node.to_debug_string()}"
            f"{' (low confidence)' if resolution.low_confidence else ''}",
        )
        return resolution

    async def find_element(
        self,
        bundle: Bundle,
        source: DocumentSource,
        timeout_ms: Optional[int] = None,
    ) -> Optional[Resolution]:
        """
        Re-snapshot and resolve until a match is found or the budget runs out.

        Args:
            bundle: Recorded element fingerprint
            source: Coroutine factory returning a fresh snapshot
            timeout_ms: Retry budget; defaults to the configured timeout

        Returns:
            Resolution, or None (NotFound) once the budget is exhausted
        """
        budget_s = (self.config.timeout_ms if timeout_ms is None else timeout_ms) / 1000
        interval_s = self.config.retry_interval_ms / 1000
        started = self._clock()
        attempts = 0

        while True:
            attempts += 1
            try:
                document = await source()
            except PlaywrightError as e:
                # Usually a navigation still in flight after the previous step.
                logger.debug(f"[Resolver] Snapshot failed on attempt {attempts}: {e}")
                document = None
            if document is not None:
                resolution = self.resolve(bundle, document)
                if resolution is not None:
                    return resolution
            if self._clock() - started >= budget_s:
                logger.info(f"[Resolver] NotFound after {attempts} attempts: {bundle.xpath or bundle.tag}")
                return None
            await self._sleep(interval_s)

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def _cascade(self, bundle: Bundle, context: BoundaryContext) -> Optional[Resolution]:
        root = context.root

        if context.complete and bundle.xpath:
            node = evaluate_xpath(root, bundle.xpath)
            if node is not None and node.visible:
                return Resolution(node=node, strategy="xpath")

        id_fallback: Optional[Resolution] = None
        if bundle.id:
            candidates = root.query_all(lambda n: n.id == bundle.id and n.visible)
            if candidates:
                scored = [(id_score(n, bundle, self.config.id_rect_tolerance_px), n) for n in candidates]
                top = max(score for score, _ in scored)
                best = [n for score, n in scored if score == top]
                node = break_tie(best, bundle.xpath) if len(best) > 1 else best[0]
                if top >= self.config.id_accept_score:
                    return Resolution(node=node, strategy="id", score=float(top))
                id_fallback = Resolution(node=node, strategy="id", score=float(top), low_confidence=True)

        if bundle.is_closed_shadow and context.blocked_host is not None:
            return Resolution(
                node=context.blocked_host,
                strategy="closed_shadow_host",
                low_confidence=True,
            )

        for strategy, predicate in self._attribute_predicates(bundle):
            matches = root.query_all(lambda n: n.visible and predicate(n))
            if matches:
                return self._pick(matches, bundle, strategy)

        if id_fallback is not None:
            return id_fallback

        return (
            self._fuzzy(bundle, root)
            or self._nearest_rect(bundle, root)
            or self._editor_shape(bundle, root)
            or self._coordinates(bundle, context)
            or self._data_attributes(bundle, root)
        )

    def _attribute_predicates(self, bundle: Bundle) -> list[tuple[str, Callable[[DomNode], bool]]]:
        predicates: list[tuple[str, Callable[[DomNode], bool]]] = []
        if bundle.name:
            predicates.append(("name", lambda n: n.get("name") == bundle.name))
        if bundle.aria:
            predicates.append(
                ("aria", lambda n: n.get("aria-labelledby") == bundle.aria or n.get("aria-label") == bundle.aria)
            )
        if bundle.placeholder:
            predicates.append(("placeholder", lambda n: n.get("placeholder") == bundle.placeholder))
        return predicates

    def _pick(self, matches: list[DomNode], bundle: Bundle, strategy: str) -> Resolution:
        if len(matches) == 1:
            return Resolution(node=matches[0], strategy=strategy)
        node = break_tie(matches, bundle.xpath)
        return Resolution(
            node=node,
            strategy=strategy,
            low_confidence=True,
            warnings=[f"{AMBIGUOUS_MATCH}: {len(matches)} {strategy} candidates"],
        )

    def _fuzzy(self, bundle: Bundle, root: DomNode) -> Optional[Resolution]:
        if not bundle.visible_text:
            return None
        scored: list[tuple[float, DomNode]] = []
        for node in root.query_all(lambda n: n.visible and (not bundle.tag or n.tag == bundle.tag)):
            similarity = text_similarity(candidate_text(node), bundle.visible_text)
            if similarity > self.config.fuzzy_collect_threshold:
                scored.append((similarity, node))
        if not scored:
            return None
        top = max(score for score, _ in scored)
        if top <= self.config.fuzzy_accept_threshold:
            return None
        best = [node for score, node in scored if score == top]
        resolution = self._pick(best, bundle, "fuzzy")
        resolution.score = top
        return resolution

    def _nearest_rect(self, bundle: Bundle, root: DomNode) -> Optional[Resolution]:
        recorded = bundle.bounding_rect
        if recorded is None:
            return None
        visible = root.query_all(lambda n: n.visible and n.rect is not None)
        same_tag = [n for n in visible if n.tag == bundle.tag] if bundle.tag else []
        for pool in (same_tag, visible):
            best: Optional[DomNode] = None
            best_distance = float("inf")
            for node in pool:
                distance = node.rect.distance_to(recorded)
                if distance < best_distance:
                    best, best_distance = node, distance
            if best is not None and best_distance < self.config.rect_threshold_px:
                score = 1.0 - best_distance / self.config.rect_threshold_px
                return Resolution(node=best, strategy="bounding_rect", score=score)
        return None

    def _editor_shape(self, bundle: Bundle, root: DomNode) -> Optional[Resolution]:
        hints = bundle.context_hints
        markers = f"{bundle.xpath} {bundle.class_name or ''} {bundle.tag}"
        if hints.is_terminal or "xterm" in markers:
            node = find_terminal_input(root)
            if node is not None:
                return Resolution(node=node, strategy="terminal", low_confidence=True)
        if hints.is_code_editor or "monaco" in markers:
            node = find_code_editor_input(root)
            if node is not None:
                return Resolution(node=node, strategy="code_editor", low_confidence=True)
        return None

    def _coordinates(self, bundle: Bundle, context: BoundaryContext) -> Optional[Resolution]:
        if bundle.coordinates is None or bundle.iframe_chain or not context.document.is_top_level:
            return None
        x, y = bundle.coordinates
        hit: Optional[DomNode] = None
        hit_depth = -1
        for node in context.document.query_all(lambda n: n.visible and n.rect is not None):
            if node.rect.width <= 0 or node.rect.height <= 0 or not node.rect.contains(x, y):
                continue
            depth = sum(1 for _ in node.ancestors())
            # Later siblings paint over earlier ones at the same depth.
            if depth >= hit_depth:
                hit, hit_depth = node, depth
        if hit is None:
            return None
        return Resolution(node=hit, strategy="coordinates", low_confidence=True)

    def _data_attributes(self, bundle: Bundle, root: DomNode) -> Optional[Resolution]:
        for key, value in bundle.data_attrs:
            if not value:
                continue
            node = root.query(lambda n: n.visible and n.get(key) == value)
            if node is not None:
                return Resolution(node=node, strategy="data_attributes", low_confidence=True)
        return None
