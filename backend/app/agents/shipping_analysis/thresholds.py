"""Shipping Threshold Extractor.

Single normalization boundary between noisy LLM-extracted shipping data and
everything downstream (display, aggregation, synthesis context). Pure and
deterministic: no I/O, no LLM calls.

Decision order per shipping incentive (first match wins)
--------------------------------------------------------
1. ``threshold_amount`` is numerically zero            -> 0 (free, no minimum)
2. ``threshold_amount`` carries a dollar amount in (0, ceiling] -> that amount
3. policy text says free shipping with no amount and no qualifier -> 0
4. policy text says shipping is calculated at checkout -> "calculated"
5. anything else                                       -> unknown (None)
"""

from __future__ import annotations

import re
import statistics
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from ...constants import NO_SHIPPING_DATA, THRESHOLD_SANITY_CEILING
from ...schemas.analysis_schema import AggregateMetrics

KIND_FREE = "free"
KIND_THRESHOLD = "threshold"
KIND_CALCULATED = "calculated"
KIND_UNKNOWN = "unknown"

_AMOUNT_RE = re.compile(r"\$?(\d+(?:\.\d{2})?)")
_DOLLAR_RE = re.compile(r"\$\s*\d")
_FREE_RE = re.compile(r"\bfree\b", re.IGNORECASE)
_SHIPPING_RE = re.compile(r"\b(?:shipping|ship|ships|shipped|delivery|conus)\b", re.IGNORECASE)
_QUALIFIER_RE = re.compile(
    r"\b(?:over|above|minimum|at least|or more|or higher|and up|"
    r"(?:orders?|purchases?)\s+(?:of|from|totaling|exceeding))\b",
    re.IGNORECASE,
)
# Bare numbers next to an order/purchase or followed by "+", "usd", "dollars".
_BARE_AMOUNT_RE = re.compile(
    r"\b(?:orders?|purchases?|spend|subtotal)\b[^.,;\d]{0,12}\d"
    r"|\d+(?:\.\d+)?\s*(?:\+|usd\b|dollars?\b)",
    re.IGNORECASE,
)
_CALCULATED_RE = re.compile(r"calculated\s+at\s+checkout", re.IGNORECASE)

# shipping_info fields that carry free text, in priority order.
_SHIPPING_INFO_TEXT_FIELDS: tuple[str, ...] = (
    "free_shipping_conditions",
    "shipping_thresholds",
    "shipping_incentives",
    "general_shipping_policy",
)


@dataclass(frozen=True)
class ShippingThreshold:
    """Classified threshold: ``amount`` is None for calculated/unknown."""

    amount: Optional[int]
    kind: str
    display_text: str

    @property
    def is_known(self) -> bool:
        return self.kind != KIND_UNKNOWN


_UNKNOWN = ShippingThreshold(None, KIND_UNKNOWN, "Shipping policy not specified")


# ===================================================================== #
#  Internal helpers                                                       #
# ===================================================================== #

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_zero_amount(value: Any) -> bool:
    if _is_number(value):
        return value == 0
    if isinstance(value, str):
        cleaned = value.strip().lstrip("$").replace(",", "").strip()
        try:
            return float(cleaned) == 0
        except ValueError:
            return False
    return False


def _dollar_amount(value: Any, ceiling: int) -> Optional[int]:
    """Integer dollar portion of *value* when it falls in (0, ceiling]."""
    if _is_number(value):
        amount = float(value)
    elif isinstance(value, str):
        match = _AMOUNT_RE.search(value)
        if not match:
            return None
        amount = float(match.group(1))
    else:
        return None
    dollars = int(amount)
    if 0 < dollars <= ceiling:
        return dollars
    return None


def is_unconditional_free_shipping(text: str) -> bool:
    """True for "free shipping" wording with no amount and no qualifier.

    "Free shipping on all orders" qualifies; "Free shipping on orders over
    $50" and "Free shipping on orders of 3+ items" do not.
    """
    if not text:
        return False
    return (
        bool(_FREE_RE.search(text))
        and bool(_SHIPPING_RE.search(text))
        and not _DOLLAR_RE.search(text)
        and not _BARE_AMOUNT_RE.search(text)
        and not _QUALIFIER_RE.search(text)
    )


def is_calculated_at_checkout(text: str) -> bool:
    return bool(text) and bool(_CALCULATED_RE.search(text))


def _classify_text(text: str) -> ShippingThreshold:
    """Rules 3 and 4 applied to free policy text."""
    if is_unconditional_free_shipping(text):
        return ShippingThreshold(0, KIND_FREE, text.strip() or "Free shipping")
    if is_calculated_at_checkout(text):
        return ShippingThreshold(None, KIND_CALCULATED, "Shipping calculated at checkout")
    return _UNKNOWN


def _classify_incentive(incentive: Mapping[str, Any], ceiling: int) -> ShippingThreshold:
    amount = incentive.get("threshold_amount")
    policy = " ".join(
        str(incentive.get(key) or "").strip()
        for key in ("policy", "free_shipping_tier")
    ).strip()

    if amount is not None and _is_zero_amount(amount):
        return ShippingThreshold(0, KIND_FREE, policy or "Free shipping")

    dollars = _dollar_amount(amount, ceiling) if amount is not None else None
    if dollars is not None:
        return ShippingThreshold(dollars, KIND_THRESHOLD, f"${dollars}+ for free shipping")

    return _classify_text(policy)


def _incentives_of(data: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    incentives = data.get("shipping_incentives")
    if isinstance(incentives, list):
        return [item for item in incentives if isinstance(item, Mapping)]
    if "threshold_amount" in data or "policy" in data:
        return [data]
    return []


def _shipping_info_text(data: Mapping[str, Any]) -> str:
    info = data.get("shipping_info")
    if not isinstance(info, Mapping):
        return ""
    parts = [str(info.get(key) or "").strip() for key in _SHIPPING_INFO_TEXT_FIELDS]
    return " | ".join(part for part in parts if part)


# ===================================================================== #
#  Public API                                                             #
# ===================================================================== #

def classify_threshold(
    data: Optional[Mapping[str, Any]],
    *,
    ceiling: int = THRESHOLD_SANITY_CEILING,
) -> ShippingThreshold:
    """Classify the free-shipping threshold carried by extracted *data*.

    *data* is either a single incentive (``threshold_amount`` / ``policy``)
    or a full extraction payload with a ``shipping_incentives`` list and an
    optional ``shipping_info`` block. Incentives are inspected in order and
    the first one that decides wins; ``shipping_info`` text is consulted
    only when no incentive decides.
    """
    if not data:
        return _UNKNOWN

    for incentive in _incentives_of(data):
        result = _classify_incentive(incentive, ceiling)
        if result.is_known:
            return result

    return _classify_text(_shipping_info_text(data))


def extract_threshold(
    data: Optional[Mapping[str, Any]],
    *,
    ceiling: int = THRESHOLD_SANITY_CEILING,
) -> Optional[int]:
    """Canonical threshold: 0 = free with no minimum, None = unknown."""
    return classify_threshold(data, ceiling=ceiling).amount


def summarize_shipping(data: Optional[Mapping[str, Any]]) -> str:
    """One-line shipping summary for reports and synthesis prompts."""
    if not data:
        return NO_SHIPPING_DATA
    incentives = _incentives_of(data)
    if not incentives:
        return NO_SHIPPING_DATA
    primary = incentives[0]
    return (
        f"Policy: {primary.get('policy') or 'N/A'} | "
        f"Threshold: {primary.get('threshold_amount') or 'N/A'} | "
        f"Delivery: {primary.get('delivery_timeframe') or 'Not specified'}"
    )


def compute_aggregate_metrics(thresholds: Iterable[Optional[int]]) -> AggregateMetrics:
    """Mean and median over the non-null thresholds.

    >>> compute_aggregate_metrics([0, 50, 75, None, 100]).median_threshold
    62.5
    """
    known = [value for value in thresholds if value is not None]
    if not known:
        return AggregateMetrics()
    return AggregateMetrics(
        mean_threshold=round(statistics.fmean(known), 2),
        median_threshold=float(statistics.median(known)),
        threshold_count=len(known),
        free_shipping_count=sum(1 for value in known if value == 0),
        thresholds=known,
    )
