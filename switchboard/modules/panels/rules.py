"""
Panel rule engine.

Decides which panel a thread belongs to from its From/To headers, and
converts panel rules into Gmail search queries for count estimates.

Membership (authoritative):
    A panel with no rules shows everything. Otherwise rules are evaluated
    in order and the first matching rule decides: accept -> in the panel,
    reject -> not in the panel. No match -> not in the panel.

Queries (approximate):
    Accept terms are OR'd inside {...}; reject terms are appended as
    negations. Pattern rules are converted on a best-effort basis, so
    estimates can drift from the real membership.
"""

import logging
import re
from typing import List, Optional, Sequence

from switchboard.models.panel import PanelConfig, PanelRule, PatternRule, SubstringRule

logger = logging.getLogger(__name__)

_ANCHORS = re.compile(r"[\^$]")
_GROUP = re.compile(r"\(([^)]+)\)")
_ESCAPE = re.compile(r"\\(.)")
_REGEX_META = re.compile(r"[*+?{}\[\]]")


def _target(rule: PanelRule, from_header: str, to_header: str) -> str:
    return (from_header if rule.field == "from" else to_header) or ""


def _clean_addresses(addresses: Sequence[str]) -> List[str]:
    return [a.strip() for a in addresses if a and a.strip()]


def matches_rule(rule: PanelRule, from_header: str, to_header: str) -> bool:
    """
    Test one rule against the header selected by rule.field (case-insensitive).

    Substring rules match if any address occurs in the header. Pattern rules
    match if the regex is found; an invalid regex never matches.
    """
    target = _target(rule, from_header, to_header)

    if isinstance(rule, SubstringRule):
        lowered = target.lower()
        return any(address.lower() in lowered for address in _clean_addresses(rule.addresses))

    try:
        return re.search(rule.pattern, target, re.IGNORECASE) is not None
    except re.error:
        logger.warning("Invalid panel rule pattern, treating as no match", extra={"pattern": rule.pattern})
        return False


def thread_matches_panel(panel: PanelConfig, from_header: str, to_header: str) -> bool:
    """First matching rule wins; a panel without rules matches everything."""
    if not panel.rules:
        return True

    for rule in panel.rules:
        if matches_rule(rule, from_header, to_header):
            return rule.action == "accept"

    return False


def assign_panel(panels: Sequence[PanelConfig], from_header: str, to_header: str) -> int:
    """
    Index of the first panel that claims the thread, or -1.

    A reject only removes the thread from that panel; later panels still get
    a chance to accept it.
    """
    for index, panel in enumerate(panels):
        if thread_matches_panel(panel, from_header, to_header):
            return index
    return -1


def _clean_term(term: str) -> str:
    term = _ESCAPE.sub(r"\1", term)
    return _REGEX_META.sub("", term).strip()


def pattern_to_gmail_terms(pattern: str) -> List[str]:
    """
    Best-effort conversion of a regex into plain search terms.

    Examples:
        "@company\\.com$"          -> ["@company.com"]
        "@(twitter|facebook)\\.com" -> ["@twitter.com", "@facebook.com"]
        "newsletter|digest"        -> ["newsletter", "digest"]
    """
    if not pattern or not pattern.strip():
        return []

    clean = _ANCHORS.sub("", pattern)

    group = _GROUP.search(clean)
    if group:
        prefix = clean[:group.start()]
        suffix = clean[group.end():]
        terms = [_clean_term(prefix + alternative + suffix) for alternative in group.group(1).split("|")]
    elif "|" in clean:
        terms = [_clean_term(alternative) for alternative in clean.split("|")]
    else:
        terms = [_clean_term(clean)]

    return [t for t in terms if t]


def rule_terms(rule: PanelRule) -> List[str]:
    if isinstance(rule, PatternRule):
        return pattern_to_gmail_terms(rule.pattern)
    return _clean_addresses(rule.addresses)


def to_substring_rule(rule: PanelRule) -> SubstringRule:
    """Migrate a pattern rule to the address-list dialect (lossy)."""
    if isinstance(rule, SubstringRule):
        return rule
    return SubstringRule(field=rule.field, addresses=pattern_to_gmail_terms(rule.pattern), action=rule.action)


def panel_to_gmail_query(panel: PanelConfig, catch_all_negations: Optional[Sequence[str]] = None) -> str:
    """
    Convert a panel's rules into a Gmail search query.

    Args:
        panel: Panel configuration
        catch_all_negations: Other panels' queries; only used for a panel
            without rules (the catch-all), which becomes "none of those"

    Returns:
        Query string, or "" when no estimate query can be built (the
        caller falls back to zero/unknown counts)

    Usage:
        panel_to_gmail_query(work)  # '{from:(@company.com) to:(team@company.com)} -from:(spam@company.com)'
    """
    if not panel.rules:
        negations = [q for q in catch_all_negations or [] if q]
        return " ".join(f"-({q})" for q in negations)

    accept_parts: List[str] = []
    reject_parts: List[str] = []

    for rule in panel.rules:
        term_queries = [f"{rule.field}:({term})" for term in rule_terms(rule)]
        if rule.action == "accept":
            accept_parts.extend(term_queries)
        else:
            reject_parts.extend(f"-{tq}" for tq in term_queries)

    parts: List[str] = []
    if accept_parts:
        # A single term needs no {} OR-group
        parts.append(accept_parts[0] if len(accept_parts) == 1 else "{" + " ".join(accept_parts) + "}")
    parts.extend(reject_parts)

    return " ".join(parts)


def build_count_queries(panels: Sequence[PanelConfig]) -> List[str]:
    """
    One estimate query per panel, in panel order.

    Panels with rules get their own query. The last panel, when it has no
    rules, is the catch-all and negates every other panel's query. Any other
    rule-less panel gets "" (zero counts, no API call).
    """
    queries: List[str] = []
    claimed: List[str] = []

    for index, panel in enumerate(panels):
        if panel.rules:
            query = panel_to_gmail_query(panel)
            queries.append(query)
            if query:
                claimed.append(query)
        elif index == len(panels) - 1:
            queries.append(panel_to_gmail_query(panel, claimed))
        else:
            queries.append("")

    return queries


def default_panels() -> List[PanelConfig]:
    """Starter layout: four panels without rules."""
    return [
        PanelConfig(name="Primary"),
        PanelConfig(name="Social"),
        PanelConfig(name="Updates"),
        PanelConfig(name="Other"),
    ]
