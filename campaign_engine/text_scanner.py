"""
campaign_engine/text_scanner.py -- Text Scanner

Finds entity references inside narrative prose with three ordered passes:

    1. Wiki links       ``[[Name]]`` / ``[[Name|Display]]`` spans, resolved
                        through the similarity resolver.
    2. Untagged mentions  known entity names appearing verbatim
                        (case-insensitive) outside any link.
    3. Misspellings     capitalized phrases that fuzzily resemble an entity
                        without matching it outright.

Later passes never report text an earlier pass already claimed.  Passes 2
and 3 run over a plain-text rendering of the source (links replaced by
their display text); every reported position and context snippet is
mapped back to the original source text.

Usage:
    from campaign_engine.text_scanner import TextScanner

    scanner = TextScanner(resolver, store.list_entities)
    findings = scanner.scan("campaign-1", "Visit [[Arkham]] and meet Dr. Armitage")
"""

from __future__ import annotations

import logging
import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Sequence

from campaign_engine.config import EngineSettings
from campaign_engine.models import DetectionType, Entity, Finding
from campaign_engine.similarity import MatchStrength, SimilarityResolver
from campaign_engine.utils import context_snippet

logger = logging.getLogger(__name__)

WIKI_LINK_RE = re.compile(r"\[\[([^\]|]+?)(?:\|([^\]]*?))?\]\]")

# One to four capitalized tokens separated by spaces or tabs.
CAPITALIZED_PHRASE_RE = re.compile(
    r"\b[A-Z][A-Za-z'-]*(?:[ \t]+[A-Z][A-Za-z'-]*){0,3}"
)

MIN_PHRASE_LENGTH = 2


# ---------------------------------------------------------------------------
# Plain-text rendering
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WikiLink:
    """One ``[[...]]`` span, located in both the source and the plain text."""
    name: str
    display: str
    start: int
    end: int
    plain_start: int
    plain_end: int


@dataclass(frozen=True)
class PlainText:
    """Source text with wiki links replaced by their display text."""
    text: str
    links: tuple[WikiLink, ...] = ()

    def segments(self) -> Iterator[tuple[int, int]]:
        """Yield ``(start, end)`` plain-text ranges that lie outside links."""
        pos = 0
        for link in self.links:
            if link.plain_start > pos:
                yield pos, link.plain_start
            pos = link.plain_end
        if pos < len(self.text):
            yield pos, len(self.text)

    def overlaps_link(self, start: int, end: int) -> bool:
        return any(
            start < link.plain_end and link.plain_start < end
            for link in self.links
        )

    def to_source(self, start: int, end: int) -> tuple[int, int]:
        """Map a plain-text range outside every link to source offsets."""
        preceding = bisect_right([link.plain_end for link in self.links], start)
        shift = sum(
            (link.end - link.start) - (link.plain_end - link.plain_start)
            for link in self.links[:preceding]
        )
        return start + shift, end + shift


def strip_wiki_links(text: str) -> PlainText:
    """Replace each wiki link with its display text (or its name).

    >>> strip_wiki_links("See [[Arkham|the town]].").text
    'See the town.'
    """
    parts: list[str] = []
    links: list[WikiLink] = []
    src_pos = 0
    plain_len = 0
    for m in WIKI_LINK_RE.finditer(text):
        before = text[src_pos:m.start()]
        parts.append(before)
        plain_len += len(before)

        name = m.group(1).strip()
        display = m.group(2) if m.group(2) else m.group(1)
        parts.append(display)
        links.append(WikiLink(
            name=name,
            display=display,
            start=m.start(),
            end=m.end(),
            plain_start=plain_len,
            plain_end=plain_len + len(display),
        ))
        plain_len += len(display)
        src_pos = m.end()
    parts.append(text[src_pos:])
    return PlainText(text="".join(parts), links=tuple(links))


# ---------------------------------------------------------------------------
# TextScanner
# ---------------------------------------------------------------------------

class TextScanner:
    """Three-pass entity reference scanner.

    Parameters
    ----------
    resolver : SimilarityResolver
        Scored fuzzy lookup used by the wiki-link and misspelling passes.
    list_entities : callable
        ``list_entities(campaign_id)`` returning the campaign's entities.
    settings : EngineSettings, optional
        Snippet radius, misspelling cap and minimum mention length.
    """

    def __init__(
        self,
        resolver: SimilarityResolver,
        list_entities: Callable[[str], Sequence[Entity]],
        settings: Optional[EngineSettings] = None,
    ):
        self._resolver = resolver
        self._list_entities = list_entities
        self._settings = settings or EngineSettings()

    def scan(self, campaign_id: str, text: str) -> list[Finding]:
        """Run all three passes over *text* and return their findings in order."""
        plain = strip_wiki_links(text)

        link_findings, resolved_names = self._wiki_link_pass(campaign_id, text, plain)
        mention_findings, mention_spans = self._untagged_pass(
            campaign_id, text, plain, resolved_names
        )
        matched = set(resolved_names)
        matched.update(f.matched_text.lower() for f in mention_findings)
        misspelling_findings = self._misspelling_pass(
            campaign_id, text, plain, matched, mention_spans
        )

        logger.debug(
            "Scanned %d chars for campaign %s: %d links, %d mentions, %d misspellings",
            len(text), campaign_id, len(link_findings),
            len(mention_findings), len(misspelling_findings),
        )
        return link_findings + mention_findings + misspelling_findings

    # ------------------------------------------------------------------
    # Pass 1: wiki links
    # ------------------------------------------------------------------

    def _wiki_link_pass(
        self, campaign_id: str, text: str, plain: PlainText
    ) -> tuple[list[Finding], set[str]]:
        findings: list[Finding] = []
        resolved_names: set[str] = set()
        links = [link for link in plain.links if link.name]
        candidates = self._resolver.best_matches(
            campaign_id, [link.name for link in links]
        )

        for link, candidate in zip(links, candidates):
            strength = (
                self._resolver.classify(candidate.similarity)
                if candidate is not None else MatchStrength.NOISE
            )
            if strength is MatchStrength.RESOLVED:
                detection = DetectionType.WIKI_LINK_RESOLVED
                resolved_names.add(link.name.lower())
            else:
                detection = DetectionType.WIKI_LINK_UNRESOLVED
            keep_candidate = strength is not MatchStrength.NOISE

            findings.append(Finding(
                detection_type=detection,
                matched_text=link.name,
                entity_ref=candidate.entity_id if keep_candidate else None,
                similarity=candidate.similarity if keep_candidate else None,
                context_snippet=self._snippet(text, link.start, link.end),
                position_start=link.start,
                position_end=link.end,
                suggested_content={"display_text": link.display},
            ))
        return findings, resolved_names

    # ------------------------------------------------------------------
    # Pass 2: untagged mentions
    # ------------------------------------------------------------------

    def _untagged_pass(
        self,
        campaign_id: str,
        text: str,
        plain: PlainText,
        resolved_names: set[str],
    ) -> tuple[list[Finding], list[tuple[int, int]]]:
        try:
            entities = list(self._list_entities(campaign_id))
        except Exception as e:
            logger.warning(
                "Could not list entities for campaign %s; skipping untagged "
                "mention pass: %s", campaign_id, e,
            )
            return [], []

        findings: list[Finding] = []
        spans: list[tuple[int, int]] = []
        seen: set[str] = set()
        for entity in entities:
            name = entity.name.strip()
            key = name.lower()
            if (
                len(name) < self._settings.min_mention_length
                or key in resolved_names
                or key in seen
            ):
                continue
            seen.add(key)

            span = self._first_occurrence(plain, name)
            if span is None:
                continue
            start, end = span
            spans.append(span)
            src_start, src_end = plain.to_source(start, end)
            findings.append(Finding(
                detection_type=DetectionType.UNTAGGED_MENTION,
                matched_text=plain.text[start:end],
                entity_ref=entity.id,
                similarity=1.0,
                context_snippet=self._snippet(text, src_start, src_end),
                position_start=src_start,
                position_end=src_end,
                suggested_content={
                    "entity_name": entity.name,
                    "entity_type": entity.entity_type,
                },
            ))
        return findings, spans

    @staticmethod
    def _first_occurrence(plain: PlainText, name: str) -> Optional[tuple[int, int]]:
        pattern = re.compile(re.escape(name), re.IGNORECASE)
        for m in pattern.finditer(plain.text):
            if not plain.overlaps_link(m.start(), m.end()):
                return m.start(), m.end()
        return None

    # ------------------------------------------------------------------
    # Pass 3: misspellings
    # ------------------------------------------------------------------

    def _misspelling_pass(
        self,
        campaign_id: str,
        text: str,
        plain: PlainText,
        matched: set[str],
        mention_spans: list[tuple[int, int]],
    ) -> list[Finding]:
        cap = self._settings.misspelling_cap
        if cap == 0:
            return []

        candidates = list(self._phrase_candidates(plain, matched, mention_spans))
        findings: list[Finding] = []
        batch_size = self._settings.resolver_workers

        for i in range(0, len(candidates), batch_size):
            batch = candidates[i:i + batch_size]
            results = self._resolver.best_matches(
                campaign_id, [phrase for phrase, _, _ in batch]
            )
            for (phrase, start, end), candidate in zip(batch, results):
                if not self._resolver.is_near_miss(candidate):
                    continue
                src_start, src_end = plain.to_source(start, end)
                findings.append(Finding(
                    detection_type=DetectionType.MISSPELLING,
                    matched_text=phrase,
                    entity_ref=candidate.entity_id,
                    similarity=candidate.similarity,
                    context_snippet=self._snippet(text, src_start, src_end),
                    position_start=src_start,
                    position_end=src_end,
                    suggested_content={"suggested_name": candidate.name},
                ))
                if len(findings) >= cap:
                    logger.debug(
                        "Misspelling cap (%d) reached for campaign %s", cap, campaign_id
                    )
                    return findings
        return findings

    @staticmethod
    def _phrase_candidates(
        plain: PlainText,
        matched: set[str],
        mention_spans: list[tuple[int, int]],
    ) -> Iterator[tuple[str, int, int]]:
        """Yield unclaimed capitalized phrases in reading order, once each."""
        seen: set[str] = set()
        for seg_start, seg_end in plain.segments():
            for m in CAPITALIZED_PHRASE_RE.finditer(plain.text, seg_start, seg_end):
                phrase = m.group(0)
                key = phrase.lower()
                if len(phrase) < MIN_PHRASE_LENGTH or key in matched or key in seen:
                    continue
                if any(m.start() < e and s < m.end() for s, e in mention_spans):
                    continue
                seen.add(key)
                yield phrase, m.start(), m.end()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _snippet(self, text: str, start: int, end: int) -> str:
        return context_snippet(text, start, end, self._settings.context_radius)
