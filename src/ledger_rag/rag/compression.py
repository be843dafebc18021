"""
Compact CSV codec for handing transaction windows to an LLM.

Rows are encoded as header-less CSV with fixed field order:

    tx_code,yyMMdd,merchant_code,amount_cents,category_code

Merchant and category labels never appear in the rows. They travel in a
per-response dictionary, masked. Field values are built so that they can
never contain a comma, so no escaping is needed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from ledger_rag.rag.masking import mask_deep

FALLBACK_CATEGORY_CODE = "ot"

CATEGORY_SHORT_CODES = {
    "EatingOut": "eo",
    "Groceries": "gr",
    "Transport": "tr",
    "Travel": "tv",
    "Shopping": "sh",
    "Entertainment": "en",
    "Utilities": "ut",
    "Housing": "ho",
    "Healthcare": "hc",
    "Transfer": "tf",
    "Income": "in",
}
_CASEFOLDED_CODES = {name.casefold(): code for name, code in CATEGORY_SHORT_CODES.items()}

_NON_ALPHA = re.compile(r"[^A-Za-z]")


@dataclass(frozen=True)
class CompactRow:
    tx_code: str
    occurred_on: date
    merchant_code: str
    amount_cents: int
    category_code: str


def transaction_code(transaction_id: UUID | str) -> str:
    """Stable short code: 't' + first 8 hex digits of the transaction id."""
    return "t" + str(transaction_id).replace("-", "")[:8]


def short_category(label: str | None) -> str:
    """Two-letter mnemonic for a category label."""
    if label is None or not label.strip():
        return FALLBACK_CATEGORY_CODE
    normalized = label.strip()
    known = CATEGORY_SHORT_CODES.get(normalized) or _CASEFOLDED_CODES.get(normalized.casefold())
    if known:
        return known

    letters = _NON_ALPHA.sub("", normalized).lower()
    if len(letters) >= 2:
        return letters[:2]
    if len(letters) == 1:
        return letters * 2
    return FALLBACK_CATEGORY_CODE


def encode_rows(rows: list[CompactRow]) -> str:
    """Encode rows as newline-separated CSV with no header and no trailing newline."""
    return "\n".join(
        ",".join((
            row.tx_code,
            row.occurred_on.strftime("%y%m%d"),
            row.merchant_code,
            str(row.amount_cents),
            short_category(row.category_code),
        ))
        for row in rows
    )


@dataclass
class Dictionary:
    """
    Response-local code tables.

    Merchant codes are m1, m2, ... in first-seen order and reset with every
    response. Category codes reuse short_category() output directly. Labels
    are kept as given and masked when the payload is built.
    """
    _merchant_codes: dict[str, str] = field(default_factory=dict)
    merchants: dict[str, str] = field(default_factory=dict)
    categories: dict[str, str] = field(default_factory=dict)

    def merchant_code(self, merchant_id: UUID | str, merchant_name: str) -> str:
        key = str(merchant_id)
        code = self._merchant_codes.get(key)
        if code is None:
            code = f"m{len(self._merchant_codes) + 1}"
            self._merchant_codes[key] = code
            self.merchants[code] = merchant_name or ""
        return code

    def register_category(self, code: str, label: str) -> None:
        if code not in self.categories:
            self.categories[code] = label or ""

    def as_payload(self) -> dict[str, dict[str, str]]:
        return mask_deep({
            "merchants": dict(self.merchants),
            "categories": dict(self.categories),
        })
