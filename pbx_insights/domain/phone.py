"""Phone number normalization and fuzzy matching.

CDRs and directory entries never share a canonical number format: the PBX
may report ``+27821234567`` for a contact stored as ``082 123 4567``. Two
numbers match when they are equal after normalization, equal after rewriting
a known international prefix to its domestic trunk digit, or share their
last 9/10 digits when both are long enough to be a full subscriber number.
"""
from __future__ import annotations

import re
from typing import Iterable, List, NamedTuple, Optional, Sequence

from pbx_insights import config
from pbx_insights.domain.models import Company, Contact

_NON_DIGITS = re.compile(r"\D")


class TrunkRule(NamedTuple):
    """Rewrite ``international_prefix`` to ``trunk_digit`` for national comparison."""

    international_prefix: str
    trunk_digit: str


def normalize_phone_number(phone: Optional[str]) -> str:
    """Strip formatting, keeping a leading ``+`` for international numbers."""

    if not phone:
        return ""
    value = phone.strip()
    digits = _NON_DIGITS.sub("", value)
    if not digits:
        return ""
    return f"+{digits}" if value.startswith("+") else digits


def parse_trunk_rules(value: str) -> List[TrunkRule]:
    """Parse ``"+27:0,+44:0"`` into trunk rules, ignoring malformed items."""

    rules: List[TrunkRule] = []
    for item in value.split(","):
        prefix, sep, trunk = item.strip().partition(":")
        if not sep or not prefix.strip():
            continue
        rules.append(TrunkRule(prefix.strip(), trunk.strip()))
    return rules


class PhoneNumberMatcher:
    """Compares phone numbers across formatting conventions."""

    def __init__(
        self,
        trunk_rules: Iterable[TrunkRule | tuple[str, str]] | None = None,
        min_suffix_length: int = config.MIN_SUFFIX_LENGTH,
        suffix_lengths: Sequence[int] = config.SUFFIX_LENGTHS,
    ) -> None:
        rules = config.DEFAULT_TRUNK_RULES if trunk_rules is None else trunk_rules
        self._rules = [
            TrunkRule(normalize_phone_number(prefix), trunk) for prefix, trunk in rules if normalize_phone_number(prefix)
        ]
        self._min_suffix_length = min_suffix_length
        self._suffix_lengths = tuple(suffix_lengths)

    @property
    def trunk_rules(self) -> List[TrunkRule]:
        return list(self._rules)

    @staticmethod
    def normalize(phone: Optional[str]) -> str:
        return normalize_phone_number(phone)

    def national_form(self, phone: Optional[str]) -> str:
        """Return the number with the first matching international prefix rewritten."""

        normalized = normalize_phone_number(phone)
        for rule in self._rules:
            if normalized.startswith(rule.international_prefix):
                return rule.trunk_digit + normalized[len(rule.international_prefix):]
        return normalized

    def match(self, a: Optional[str], b: Optional[str]) -> bool:
        """Return whether ``a`` and ``b`` refer to the same number."""

        first = normalize_phone_number(a)
        second = normalize_phone_number(b)
        if not first or not second:
            return False
        if first == second:
            return True
        if self.national_form(first) == self.national_form(second):
            return True

        digits_a = first.lstrip("+")
        digits_b = second.lstrip("+")
        if len(digits_a) < self._min_suffix_length or len(digits_b) < self._min_suffix_length:
            return False
        return any(digits_a[-length:] == digits_b[-length:] for length in self._suffix_lengths)

    def matches_any(self, phone: Optional[str], candidates: Iterable[str]) -> bool:
        return any(self.match(phone, candidate) for candidate in candidates)

    def matches_pattern(self, phone: Optional[str], pattern: Optional[str]) -> bool:
        """Company pattern semantics: prefix of the number (either form) or a digit substring."""

        normalized_pattern = normalize_phone_number(pattern)
        normalized = normalize_phone_number(phone)
        if not normalized_pattern or not normalized:
            return False
        if normalized.startswith(normalized_pattern):
            return True
        if self.national_form(normalized).startswith(self.national_form(normalized_pattern)):
            return True
        return normalized_pattern.lstrip("+") in normalized.lstrip("+")

    def find_contacts(self, contacts: Iterable[Contact], phone: Optional[str]) -> List[Contact]:
        """Return the contacts holding a number that matches ``phone``."""

        if not normalize_phone_number(phone):
            return []
        return [c for c in contacts if self.matches_any(phone, c.phone_numbers())]

    def infer_company(self, phone: Optional[str], companies: Iterable[Company]) -> Optional[Company]:
        """Return the first company with a pattern matching ``phone``."""

        for company in companies:
            if any(self.matches_pattern(phone, pattern) for pattern in company.phone_patterns):
                return company
        return None


def company_phone_numbers(contacts: Iterable[Contact], company_id: str) -> List[str]:
    """Return the normalized, de-duplicated numbers of a company's contacts."""

    seen: dict[str, None] = {}
    for contact in contacts:
        if contact.company_id != company_id:
            continue
        for number in contact.phone_numbers():
            seen.setdefault(normalize_phone_number(number), None)
    return [number for number in seen if number]


def format_phone_number(phone: Optional[str]) -> str:
    """Format a number for display, returning unknown shapes unchanged."""

    if not phone:
        return ""
    normalized = normalize_phone_number(phone)
    if normalized.startswith("+27") and len(normalized) == 12:
        return f"+27 {normalized[3:5]} {normalized[5:8]} {normalized[8:]}"
    if normalized.startswith("0") and len(normalized) == 10:
        return f"{normalized[:3]} {normalized[3:6]} {normalized[6:]}"
    if normalized.startswith("+") and len(normalized) > 10:
        rest = normalized[3:]
        groups = [rest[i:i + 3] for i in range(0, len(rest), 3)]
        return f"{normalized[:3]} {' '.join(groups)}"
    return phone
