"""
Receipt Text Parser

Turns OCR text from a receipt into a ReceiptSuggestion.

DESIGN DECISION: Plain regex heuristics, no ML.
1. Transparent: the user sees the raw text next to the guess
2. The suggestion only pre-fills an expense form
3. The user (and the split validator) have the final say

HEURISTICS:
- Amounts are numbers with exactly two decimals, optionally with
  thousands separators and a currency mark ("$", "Rs.", "₹")
- The total is the last amount on a line labelled "total" (not
  "subtotal"); without such a line, the largest amount
- The date is the first date-looking token; day-first for d/m/y
- The merchant is the first non-empty line
"""

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

from splitledger.models.receipt import ReceiptSuggestion


logger = structlog.get_logger(__name__)


AMOUNT_PATTERN = re.compile(
    r"(?:\$|₹|rs\.?)?\s?(?<![\d,])(\d{1,3}(?:,\d{3})+|\d+)\.(\d{2})(?![\d])",
    re.IGNORECASE,
)
DATE_PATTERN = re.compile(
    r"(\d{1,2}[/-]\d{1,2}[/-]\d{2,4})|(\d{4}[/-]\d{1,2}[/-]\d{1,2})"
)
TOTAL_LINE_PATTERN = re.compile(r"(?<!sub)(?<!sub\s)total", re.IGNORECASE)

DATE_FORMATS = [
    "%Y-%m-%d", "%Y/%m/%d",
    "%d-%m-%Y", "%d/%m/%Y",
    "%d-%m-%y", "%d/%m/%y",
]


def _to_decimal(whole: str, cents: str) -> Optional[Decimal]:
    try:
        return Decimal(f"{whole.replace(',', '')}.{cents}")
    except InvalidOperation:
        return None


def find_amounts(text: str) -> list[Decimal]:
    """Every amount-looking token in text, in order of appearance."""
    amounts = []
    for match in AMOUNT_PATTERN.finditer(text):
        value = _to_decimal(match.group(1), match.group(2))
        if value is not None:
            amounts.append(value)
    return amounts


def parse_date(token: str) -> Optional[datetime]:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(token, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


class ReceiptTextParser:
    """Stateless; one instance can be shared."""

    def _labelled_total(self, lines: list[str]) -> Optional[Decimal]:
        total = None
        for line in lines:
            if TOTAL_LINE_PATTERN.search(line):
                amounts = find_amounts(line)
                if amounts:
                    total = amounts[-1]
        return total

    def _detect_date(self, text: str) -> Optional[datetime]:
        for match in DATE_PATTERN.finditer(text):
            parsed = parse_date(match.group(0))
            if parsed is not None:
                return parsed
        return None

    def parse(self, raw_text: Optional[str]) -> ReceiptSuggestion:
        """
        Parse OCR text.

        Never raises on odd input; an unreadable receipt gives a
        suggestion without an amount.
        """
        text = raw_text or ""
        lines = [line.strip() for line in text.splitlines() if line.strip()]

        candidates = find_amounts(text)
        detected = self._labelled_total(lines)
        if detected is None and candidates:
            detected = max(candidates)

        suggestion = ReceiptSuggestion(
            raw_text=text,
            detected_amount=detected,
            detected_date=self._detect_date(text),
            candidate_amounts=candidates,
            merchant_hint=lines[0][:200] if lines else None,
        )

        logger.info(
            "receipt_parsed",
            suggestion_id=str(suggestion.suggestion_id),
            candidate_count=len(candidates),
            detected_amount=str(detected) if detected is not None else None,
        )
        return suggestion
