"""View layer for formatting payment details and fetch status (plain text)."""

from __future__ import annotations

import math
from datetime import datetime

from .errors import OFFLINE_MESSAGE
from .models.fetch_state import FetchSnapshot, FetchState
from .models.payment import Payment

STATUS_LABELS = {
    "paid": ("Paid", "\u2705"),  # check mark
    "pending": ("Pending", "\u23f3"),  # hourglass
    "cancelled": ("Cancelled", "\u274c"),  # cross mark
    "processing": ("Processing", "\U0001f504"),  # anticlockwise arrows
}


def format_date(value: str | None) -> str:
    """Render an ISO date as e.g. "March 5, 2024"."""
    if not value:
        return "Invalid date"
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return "Invalid date"
    return f"{dt:%B} {dt.day}, {dt.year}"


def _group_indian(digits: str) -> str:
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: float | int | None) -> str:
    """Format rupees with Indian digit grouping.

    Example:
        >>> format_currency(123456.5)
        '₹1,23,456.50'
    """
    try:
        value = float(amount)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "n/a"
    if math.isnan(value) or math.isinf(value):
        return "n/a"
    sign = "-" if value < 0 else ""
    whole, frac = f"{abs(value):.2f}".split(".")
    return f"{sign}₹{_group_indian(whole)}.{frac}"


def status_label(status: str | None) -> str:
    if not status:
        return "Unknown"
    label = STATUS_LABELS.get(status.lower())
    if label is None:
        return status.capitalize()
    text, emoji = label
    return f"{emoji} {text}"


def render_payment(payment: Payment) -> str:
    candidate = payment.get("candidateId") or {}
    lines = [
        f"Payment #{payment.get('_id', '?')}",
        f"Date: {format_date(payment.get('paymentDate'))}",
        f"Status: {status_label(payment.get('status'))}",
        f"Amount: {format_currency(payment.get('amount'))}",
        f"Type: {payment.get('type') or 'n/a'}",
        f"Mode: {payment.get('paymentMode') or 'n/a'}",
    ]
    if payment.get("transactionId"):
        lines.append(f"Transaction: {payment['transactionId']}")
    if payment.get("month") or payment.get("year"):
        period = f"{payment.get('month', '')} {payment.get('year', '')}"
        lines.append(f"Period: {period.strip()}")
    if candidate:
        who = candidate.get("name") or "Unknown candidate"
        email = candidate.get("email")
        lines.append(f"Candidate: {who}" + (f" <{email}>" if email else ""))
    bank = payment.get("bankDetails") or {}
    if bank.get("bankName"):
        ifsc = bank.get("ifscCode") or "no IFSC"
        lines.append(f"Bank: {bank['bankName']} ({ifsc})")
    if payment.get("description"):
        lines.append("")
        lines.append(str(payment["description"]))
    return "\n".join(lines)


def _retry_countdown(snapshot: FetchSnapshot, now: float | None = None) -> str:
    remaining = snapshot.seconds_until_retry(now)
    if remaining is None and snapshot.next_retry_delay_ms is not None:
        remaining = snapshot.next_retry_delay_ms / 1000.0
    if remaining is None:
        return ""
    return f" Retrying in {math.ceil(remaining)} seconds..."


def render_fetch_status(snapshot: FetchSnapshot, now: float | None = None) -> str:
    """Human-readable line for the current fetch state."""
    state = snapshot.state
    if state == FetchState.IDLE:
        return "Nothing requested yet."
    if state == FetchState.SUCCESS:
        resource = snapshot.resource
        if isinstance(resource, dict):
            return render_payment(resource)  # type: ignore[arg-type]
        return str(resource)
    if state == FetchState.LOADING:
        if snapshot.offline:
            return f"Loading... {OFFLINE_MESSAGE}"
        return "Loading..."
    if state == FetchState.RETRYING:
        waiting = snapshot.next_retry_delay_ms is None
        if snapshot.reason_category == "offline" and waiting:
            return f"{OFFLINE_MESSAGE} Waiting for connection."
        counter = f"({snapshot.attempt_number}/{snapshot.max_attempts})"
        return f"Connection issue.{_retry_countdown(snapshot, now)} {counter}"

    reason = str(snapshot.error) if snapshot.error else "unknown error"
    if snapshot.retries_exhausted:
        return "Maximum retry attempts reached. Please try again later."
    if snapshot.reason_category == "offline":
        return f"Failed to load: {OFFLINE_MESSAGE}"
    return f"Failed to load: {reason}"
