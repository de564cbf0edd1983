"""Record types and closed vocabularies for donors, donations, expenses, and members."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

from .errors import ValidationError

NAN = Decimal("NaN")
ZERO = Decimal("0")
CENT = Decimal("0.01")

_LABELS = {
    "bank_transfer": "Bank Transfer",
    "credit_card": "Credit Card",
    "online": "Online Payment",
    "general": "General Fund",
    "emergency": "Emergency Relief",
    "salaries": "Salaries & Wages",
    "programs": "Program Expenses",
    "rent": "Rent & Facilities",
}


class _Choice(str, Enum):
    @classmethod
    def from_str(cls, value: object) -> Any:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as error:
            allowed = ", ".join(member.value for member in cls)
            raise ValidationError(
                f"Unsupported {cls.__name__} value {value!r}; expected one of: {allowed}."
            ) from error

    @property
    def label(self) -> str:
        return _LABELS.get(self.value, self.value.replace("_", " ").title())


class DonationMethod(_Choice):
    CASH = "cash"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    ONLINE = "online"


class DonationCategory(_Choice):
    GENERAL = "general"
    EDUCATION = "education"
    HEALTHCARE = "healthcare"
    INFRASTRUCTURE = "infrastructure"
    EMERGENCY = "emergency"


class ExpenseCategory(_Choice):
    OPERATIONS = "operations"
    SALARIES = "salaries"
    PROGRAMS = "programs"
    UTILITIES = "utilities"
    RENT = "rent"
    SUPPLIES = "supplies"
    TRAVEL = "travel"
    MARKETING = "marketing"
    OTHER = "other"


class PaymentMethod(_Choice):
    CASH = "cash"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"


class ExpenseStatus(_Choice):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"


class RecordStatus(_Choice):
    ACTIVE = "active"
    INACTIVE = "inactive"


def parse_amount(value: object) -> Decimal:
    """Coerce a stored or typed amount to ``Decimal``.

    Anything that is not a number comes back as ``Decimal("NaN")`` so totals
    built from it show NaN instead of a silently wrong figure.
    """

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool) or value is None:
        return NAN
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return NAN
        amount = Decimal(str(value))
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            return NAN
    else:
        return NAN
    return amount if amount.is_finite() else NAN


def parse_date(value: object) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def cents_from_amount(amount: Decimal) -> int:
    return int(amount.quantize(CENT) * 100)


def amount_from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def format_currency(amount: Decimal | int | float) -> str:
    return f"${Decimal(str(amount)):,.2f}"


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _number(amount: Decimal) -> float | int:
    if amount.is_nan():
        return float("nan")
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Donor:
    id: str
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""
    total_donations: Decimal = ZERO
    last_donation: str = "-"
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Donor":
        return cls(
            id=str(record["id"]),
            name=_text(record.get("name")),
            email=_text(record.get("email")),
            phone=_text(record.get("phone")),
            address=_text(record.get("address")),
            total_donations=parse_amount(record.get("total_donations", 0)),
            last_donation=_text(record.get("last_donation")) or "-",
            status=RecordStatus.from_str(record.get("status") or RecordStatus.ACTIVE),
        )

    def as_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "total_donations": _number(self.total_donations),
            "last_donation": self.last_donation,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Donation:
    id: str
    donor_id: str
    donor_name: str
    amount: Decimal
    date: date | None
    method: DonationMethod = DonationMethod.CASH
    category: DonationCategory = DonationCategory.GENERAL
    notes: str = ""

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Donation":
        return cls(
            id=str(record["id"]),
            donor_id=_text(record.get("donor_id")),
            donor_name=_text(record.get("donor_name")),
            amount=parse_amount(record.get("amount")),
            date=parse_date(record.get("date")),
            method=DonationMethod.from_str(record.get("method") or DonationMethod.CASH),
            category=DonationCategory.from_str(record.get("category") or DonationCategory.GENERAL),
            notes=_text(record.get("notes")),
        )

    def as_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "donor_id": self.donor_id,
            "donor_name": self.donor_name,
            "amount": _number(self.amount),
            "date": _iso(self.date),
            "method": self.method.value,
            "category": self.category.value,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Expense:
    id: str
    description: str
    amount: Decimal
    date: date | None
    category: ExpenseCategory = ExpenseCategory.OPERATIONS
    payment_method: PaymentMethod = PaymentMethod.CASH
    vendor: str = ""
    notes: str = ""
    status: ExpenseStatus = ExpenseStatus.PENDING

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Expense":
        return cls(
            id=str(record["id"]),
            description=_text(record.get("description")),
            amount=parse_amount(record.get("amount")),
            date=parse_date(record.get("date")),
            category=ExpenseCategory.from_str(record.get("category") or ExpenseCategory.OPERATIONS),
            payment_method=PaymentMethod.from_str(record.get("payment_method") or PaymentMethod.CASH),
            vendor=_text(record.get("vendor")),
            notes=_text(record.get("notes")),
            status=ExpenseStatus.from_str(record.get("status") or ExpenseStatus.PENDING),
        )

    def as_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "amount": _number(self.amount),
            "date": _iso(self.date),
            "category": self.category.value,
            "payment_method": self.payment_method.value,
            "vendor": self.vendor,
            "notes": self.notes,
            "status": self.status.value,
        }


def format_member_code(sequence: int) -> str:
    return f"MEM{sequence:04d}"


@dataclass(frozen=True)
class Member:
    id: str
    member_id: str
    name: str
    email: str
    phone: str = ""
    address: str = ""
    join_date: date | None = None
    total_savings: Decimal = ZERO
    total_loans: Decimal = ZERO
    status: RecordStatus = RecordStatus.ACTIVE

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Member":
        return cls(
            id=str(record["id"]),
            member_id=_text(record.get("member_id")),
            name=_text(record.get("name")),
            email=_text(record.get("email")),
            phone=_text(record.get("phone")),
            address=_text(record.get("address")),
            join_date=parse_date(record.get("join_date")),
            total_savings=parse_amount(record.get("total_savings", 0)),
            total_loans=parse_amount(record.get("total_loans", 0)),
            status=RecordStatus.from_str(record.get("status") or RecordStatus.ACTIVE),
        )

    def as_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "join_date": _iso(self.join_date),
            "total_savings": _number(self.total_savings),
            "total_loans": _number(self.total_loans),
            "status": self.status.value,
        }
