"""
Mapping of raw bank API transaction records onto ``TransactionIn``.

All defaulting of optional remote fields happens here so that nothing
downstream ever sees ``None`` for a column the store declares NOT NULL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Sequence, Union

from schemas import TransactionIn


logger = logging.getLogger(__name__)

DEFAULT_TRANSACTION_TYPE = "Other"

# Largest value a signed 64-bit INTEGER column holds.
MAX_CENTS = 2**63 - 1

REQUIRED_TEXT_FIELDS = ("accountId", "type", "status", "description", "transactionDate")


@dataclass(frozen=True)
class Rejection:
    index: int
    missing_fields: list[str]
    reason: str
    record: Mapping[str, Any] = field(repr=False)


@dataclass
class NormalizedBatch:
    valid: list[TransactionIn] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)


def to_cents(value: Union[int, float, str, Decimal]) -> int:
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError(f"Amount out of range: {value!r}") from exc
    if abs(cents) > MAX_CENTS:
        raise ValueError(f"Amount out of range: {value!r}")
    return cents


def parse_date(value: str) -> date:
    return date.fromisoformat(value.strip()[:10])


def _text(record: Mapping[str, Any], key: str) -> str:
    value = record.get(key)
    if value is None:
        return ""
    return str(value).strip()


def missing_fields(record: Mapping[str, Any]) -> list[str]:
    missing = [key for key in REQUIRED_TEXT_FIELDS if not _text(record, key)]
    # 0 is a legitimate amount; only absence counts.
    if record.get("amount") is None:
        missing.append("amount")
    return missing


def normalize(
    record: Mapping[str, Any], index: int = 0
) -> Union[TransactionIn, Rejection]:
    missing = missing_fields(record)
    if missing:
        return Rejection(
            index=index,
            missing_fields=missing,
            reason="missing required fields: " + ", ".join(missing),
            record=record,
        )

    try:
        amount_cents = abs(to_cents(record["amount"]))
        transaction_date = parse_date(_text(record, "transactionDate"))
        running_balance = record.get("runningBalance")
        running_balance_cents = (
            to_cents(running_balance) if running_balance is not None else 0
        )
        posted_order = int(record.get("postedOrder") or 0)
    except (TypeError, ValueError) as exc:
        return Rejection(index=index, missing_fields=[], reason=str(exc), record=record)

    return TransactionIn(
        account_id=_text(record, "accountId"),
        type=_text(record, "type").lower(),
        transaction_type=_text(record, "transactionType") or DEFAULT_TRANSACTION_TYPE,
        status=_text(record, "status"),
        description=_text(record, "description"),
        card_number=_text(record, "cardNumber"),
        posted_order=posted_order,
        posting_date=_text(record, "postingDate"),
        value_date=_text(record, "valueDate"),
        action_date=_text(record, "actionDate"),
        transaction_date=transaction_date,
        amount_cents=amount_cents,
        running_balance_cents=running_balance_cents,
    )


def normalize_batch(records: Sequence[Mapping[str, Any]]) -> NormalizedBatch:
    batch = NormalizedBatch()
    for idx, record in enumerate(records):
        result = normalize(record, idx)
        if isinstance(result, Rejection):
            logger.warning(
                f"normalize_rejected: index={idx} missing={result.missing_fields} "
                f"reason={result.reason}"
            )
            batch.rejected.append(result)
        else:
            batch.valid.append(result)
    return batch
