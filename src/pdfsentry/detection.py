"""
Rule-based detection engine.

Runs a rule collection against a scan surface and turns every match into a
Finding with offsets, a resolved line/column and a short context excerpt.
Detection is pure: identical input always yields identical output, and no
finding is ever deduplicated across rules.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import Category, Finding, Location, Rule, Severity
from .positions import build_offset_table, resolve_position
from .rules import RULE_SETS

logger = logging.getLogger(__name__)

CONTEXT_RADIUS = 20


def severity_filter(threshold: Severity) -> frozenset[Severity]:
    """Severities reported at *threshold* (low -> all four, critical -> critical only)."""
    threshold = Severity(threshold)
    return frozenset(s for s in Severity if s.rank >= threshold.rank)


def extract_context(content: str, start: int, end: int, radius: int = CONTEXT_RADIUS) -> str:
    """Return up to *radius* characters either side of [start, end), stripped."""
    context_start = max(0, start - radius)
    context_end = min(len(content), end + radius)
    return content[context_start:context_end].strip()


def detect(
    rules: Iterable[Rule],
    content: str,
    threshold: Severity = Severity.MEDIUM,
    *,
    category: Category,
    offsets: list[int] | None = None,
) -> list[Finding]:
    """
    Find every match of every rule at or above *threshold* in *content*.

    Findings are ordered by rule declaration order, then left to right
    within a rule. *offsets* is the surface's line table; pass it in when
    several collections scan the same content so it is built only once.
    """
    allowed = severity_filter(threshold)
    if offsets is None:
        offsets = build_offset_table(content)

    findings: list[Finding] = []
    for rule in rules:
        if rule.severity not in allowed:
            continue
        for match in rule.pattern.finditer(content):
            start, end = match.span()
            position = resolve_position(offsets, start)
            findings.append(Finding(
                category=category,
                name=rule.name,
                description=rule.description,
                severity=rule.severity,
                matched_text=match.group(0),
                location=Location(
                    start_offset=start,
                    end_offset=end,
                    line=position.line,
                    column=position.column,
                ),
                context=extract_context(content, start, end),
            ))

    logger.debug("%s: %d finding(s) at threshold %s", category.value, len(findings), threshold)
    return findings


def detect_category(
    category: Category,
    content: str,
    threshold: Severity = Severity.MEDIUM,
    offsets: list[int] | None = None,
) -> list[Finding]:
    """Run the built-in rule collection for *category* against *content*."""
    return detect(
        RULE_SETS[category],
        content,
        threshold,
        category=category,
        offsets=offsets,
    )
