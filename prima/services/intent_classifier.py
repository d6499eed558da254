"""Keyword intent classification for patient replies.

One ordered rule table drives every decision. Rules are evaluated by
priority and the first match wins, so a reply holding both a decline and a
confirmation word resolves by priority rather than by match length.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from prima.db.enums import Intent


class RuleScope(str, Enum):
    """When a rule may fire, relative to a pending verification request."""

    ANY = "any"
    VERIFICATION = "verification"
    NO_VERIFICATION = "no_verification"


@dataclass(frozen=True)
class IntentRule:
    priority: int
    intent: Intent
    keywords: tuple[str, ...]
    scope: RuleScope = RuleScope.ANY


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        1,
        Intent.UNSUBSCRIBE,
        ("berhenti", "stop", "batal", "unsubscribe", "keluar", "hentikan", "jangan kirim"),
    ),
    IntentRule(
        2,
        Intent.ACCEPT,
        ("ya", "iya", "yes", "y", "ok", "oke", "okay", "setuju", "boleh", "bersedia"),
        RuleScope.VERIFICATION,
    ),
    IntentRule(
        3,
        Intent.DECLINE,
        ("tidak", "no", "n", "tolak", "menolak", "gak", "ga", "engga", "enggak", "nggak"),
        RuleScope.VERIFICATION,
    ),
    IntentRule(
        4,
        Intent.CONFIRMATION_TAKEN,
        ("sudah", "udah", "sdh", "selesai", "done", "beres"),
    ),
    # Without a pending verification a plain yes confirms the reminder
    IntentRule(
        4,
        Intent.CONFIRMATION_TAKEN,
        ("ya", "iya", "yes", "ok", "oke"),
        RuleScope.NO_VERIFICATION,
    ),
    IntentRule(5, Intent.CONFIRMATION_MISSED, ("belum", "blm", "lupa", "terlewat")),
    IntentRule(
        5,
        Intent.CONFIRMATION_MISSED,
        ("tidak", "gak", "nggak", "enggak"),
        RuleScope.NO_VERIFICATION,
    ),
    IntentRule(6, Intent.CONFIRMATION_LATER, ("nanti", "ntar", "besok", "sebentar lagi")),
)

EMERGENCY_KEYWORDS: tuple[str, ...] = (
    "darurat",
    "sesak nafas",
    "sesak napas",
    "muntah darah",
    "pusing parah",
    "pingsan",
    "demam tinggi",
    "tolong",
    "emergency",
    "urgent",
    "parah sekali",
    "nyeri dada",
    "kejang",
    "pendarahan",
)

CONFIRMATION_INTENTS = frozenset(
    {
        Intent.CONFIRMATION_TAKEN,
        Intent.CONFIRMATION_MISSED,
        Intent.CONFIRMATION_LATER,
    }
)
VERIFICATION_INTENTS = frozenset({Intent.ACCEPT, Intent.DECLINE, Intent.UNSUBSCRIBE})

_WORD = re.compile(r"[^\w]+", re.UNICODE)


@dataclass(frozen=True)
class Classification:
    intent: Intent
    matched_keyword: str | None = None
    priority: int | None = None

    @property
    def recognized(self) -> bool:
        return self.intent != Intent.UNKNOWN


def tokenize(text: str | None) -> list[str]:
    if not text:
        return []
    return [w for w in _WORD.sub(" ", text.lower()).split() if w]


def _contains_phrase(tokens: list[str], phrase: str) -> bool:
    words = phrase.split()
    size = len(words)
    if size == 1:
        return words[0] in tokens
    return any(tokens[i : i + size] == words for i in range(len(tokens) - size + 1))


def _rule_applies(rule: IntentRule, verification_pending: bool) -> bool:
    if rule.scope == RuleScope.VERIFICATION:
        return verification_pending
    if rule.scope == RuleScope.NO_VERIFICATION:
        return not verification_pending
    return True


def classify(text: str | None, *, verification_pending: bool = False) -> Classification:
    """Classify a reply against the ordered rule table."""
    tokens = tokenize(text)
    if not tokens:
        return Classification(Intent.UNKNOWN)
    for rule in sorted(INTENT_RULES, key=lambda r: r.priority):
        if not _rule_applies(rule, verification_pending):
            continue
        for keyword in rule.keywords:
            if _contains_phrase(tokens, keyword):
                return Classification(rule.intent, keyword, rule.priority)
    return Classification(Intent.UNKNOWN)


def detect_emergency(text: str | None) -> str | None:
    """Return the first emergency keyword found, if any."""
    tokens = tokenize(text)
    for keyword in EMERGENCY_KEYWORDS:
        if _contains_phrase(tokens, keyword):
            return keyword
    return None
