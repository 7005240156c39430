"""Payment record as returned by the HTD payments API."""

from __future__ import annotations

from typing import Any, TypedDict


class CandidateRef(TypedDict, total=False):
    _id: str
    name: str
    email: str
    phone: str
    photo: str


class BankDetails(TypedDict, total=False):
    accountName: str
    accountNumber: str
    bankName: str
    ifscCode: str


class Payment(TypedDict, total=False):
    """Payment detail (partial, keys follow the API's camelCase)."""

    _id: str
    candidateId: CandidateRef
    amount: float
    type: str
    paymentDate: str
    paymentMode: str
    transactionId: str
    bankDetails: BankDetails
    description: str
    status: str
    proofUrl: str
    processor: str
    relatedTraining: dict[str, Any]
    month: str
    year: int
    createdAt: str
    updatedAt: str
