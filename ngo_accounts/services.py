"""Create, update, and delete flows behind the back-office forms.

``BackOffice`` validates form input before touching the record store, keeps
the denormalised donor totals in step with the donations, and hands out
member codes. Store failures propagate as ``StoreError`` so the views can
report them; nothing is written to memory until the store confirms. A donation
that is saved but whose donor total cannot be refreshed is reported as
``DonorTotalsError`` so the form does not invite a duplicate retry.
"""

from __future__ import annotations

import threading
from datetime import date
from decimal import Decimal
from typing import Any

from .errors import DonorTotalsError, DuplicateRecordError, StoreError, ValidationError
from .logging_utils import get_logger
from .models import (
    CENT,
    ZERO,
    Donation,
    DonationCategory,
    DonationMethod,
    Donor,
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    Member,
    PaymentMethod,
    RecordStatus,
    format_member_code,
    parse_amount,
    parse_date,
)
from .reports import total_of
from .store import EntityType, RecordStore

LOGGER = get_logger(__name__)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _require(value: str | None, message: str) -> str:
    cleaned = _clean(value)
    if cleaned is None:
        raise ValidationError(message)
    return cleaned


def _require_amount(value: object) -> Decimal:
    amount = parse_amount(value)
    if amount.is_nan():
        raise ValidationError("Amount must be a number.")
    if amount < 0:
        raise ValidationError("Amount cannot be negative.")
    if amount != amount.quantize(CENT):
        raise ValidationError("Amount cannot have more than two decimal places.")
    return amount


def _require_date(value: object) -> date:
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("A valid date is required.")
    return parsed


def _matches(search_term: str | None, *values: str) -> bool:
    needle = (search_term or "").strip().lower()
    if not needle:
        return True
    return any(needle in value.lower() for value in values)


def _draft(record: dict[str, Any]) -> dict[str, Any]:
    """Drop the placeholder id so the store assigns one."""

    return {key: value for key, value in record.items() if key != "id"}


class BackOffice:
    """Operations the donor, donation, expense, and member pages perform."""

    def __init__(self, store: RecordStore, member_code_attempts: int = 5) -> None:
        self.store = store
        self.member_code_attempts = max(1, member_code_attempts)
        self._totals_lock = threading.Lock()

    # Donors

    def list_donors(self, search_term: str | None = None) -> list[Donor]:
        donors = [Donor.from_record(row) for row in self.store.list_records(EntityType.DONORS)]
        return [donor for donor in donors if _matches(search_term, donor.name, donor.email)]

    def get_donor(self, donor_id: str) -> Donor | None:
        for donor in self.list_donors():
            if donor.id == donor_id:
                return donor
        return None

    def add_donor(
        self,
        name: str | None,
        email: str | None = None,
        phone: str | None = None,
        address: str | None = None,
    ) -> Donor:
        draft = Donor(
            id="",
            name=_require(name, "Donor name is required."),
            email=_clean(email) or "",
            phone=_clean(phone) or "",
            address=_clean(address) or "",
        )
        created = Donor.from_record(self.store.add_record(EntityType.DONORS, _draft(draft.as_record())))
        LOGGER.info("Added donor %s (%s)", created.id, created.name)
        return created

    def delete_donor(self, donor_id: str) -> None:
        self.store.delete_record(EntityType.DONORS, donor_id)
        LOGGER.info("Deleted donor %s", donor_id)

    # Donations

    def list_donations(self) -> list[Donation]:
        return [Donation.from_record(row) for row in self.store.list_records(EntityType.DONATIONS)]

    def record_donation(
        self,
        donor_id: str | None,
        amount: object,
        donation_date: object,
        method: DonationMethod | str = DonationMethod.CASH,
        category: DonationCategory | str = DonationCategory.GENERAL,
        notes: str | None = None,
    ) -> Donation:
        if not _clean(donor_id):
            raise ValidationError("Select a donor for this donation.")
        draft = Donation(
            id="",
            donor_id=str(donor_id),
            donor_name="",
            amount=_require_amount(amount),
            date=_require_date(donation_date),
            method=DonationMethod.from_str(method),
            category=DonationCategory.from_str(category),
            notes=_clean(notes) or "",
        )

        donor = self.get_donor(draft.donor_id)
        if donor is None:
            raise ValidationError(f"Donor {donor_id} does not exist.")

        record = _draft(draft.as_record())
        record["donor_name"] = donor.name
        created = Donation.from_record(self.store.add_record(EntityType.DONATIONS, record))
        LOGGER.info("Recorded donation %s of %s from donor %s", created.id, created.amount, donor.id)

        try:
            self.recompute_donor_totals(donor.id)
        except StoreError as exc:
            LOGGER.error("Donation %s saved but donor %s totals not refreshed: %s", created.id, donor.id, exc)
            raise DonorTotalsError(
                f"Donation {created.id} was saved, but the donor total could not be updated. "
                "Do not submit it again; reload the page to refresh the total."
            ) from exc
        return created

    def recompute_donor_totals(self, donor_id: str) -> Donor:
        """Rebuild a donor's total and last gift date from every stored donation.

        The stored total is derived data; it is always recomputed from the
        donations rather than adjusted by the amount just added.
        """

        with self._totals_lock:
            donations = [donation for donation in self.list_donations() if donation.donor_id == donor_id]
            dates = [donation.date for donation in donations if donation.date is not None]
            patch = {
                "total_donations": total_of(donations) if donations else ZERO,
                "last_donation": max(dates).isoformat() if dates else "-",
            }
            updated = Donor.from_record(self.store.update_record(EntityType.DONORS, donor_id, patch))
        LOGGER.info("Donor %s total recomputed to %s", donor_id, updated.total_donations)
        return updated

    # Expenses

    def list_expenses(self) -> list[Expense]:
        return [Expense.from_record(row) for row in self.store.list_records(EntityType.EXPENSES)]

    def add_expense(
        self,
        description: str | None,
        amount: object,
        expense_date: object,
        category: ExpenseCategory | str = ExpenseCategory.OPERATIONS,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        vendor: str | None = None,
        notes: str | None = None,
        status: ExpenseStatus | str = ExpenseStatus.PENDING,
    ) -> Expense:
        draft = Expense(
            id="",
            description=_require(description, "Expense description is required."),
            amount=_require_amount(amount),
            date=_require_date(expense_date),
            category=ExpenseCategory.from_str(category),
            payment_method=PaymentMethod.from_str(payment_method),
            vendor=_clean(vendor) or "",
            notes=_clean(notes) or "",
            status=ExpenseStatus.from_str(status),
        )
        created = Expense.from_record(self.store.add_record(EntityType.EXPENSES, _draft(draft.as_record())))
        LOGGER.info("Added expense %s (%s, %s)", created.id, created.description, created.amount)
        return created

    def update_expense_status(self, expense_id: str, status: ExpenseStatus | str) -> Expense:
        new_status = ExpenseStatus.from_str(status)
        updated = Expense.from_record(
            self.store.update_record(EntityType.EXPENSES, expense_id, {"status": new_status.value})
        )
        LOGGER.info("Expense %s marked %s", expense_id, new_status.value)
        return updated

    # Members

    def list_members(self, search_term: str | None = None) -> list[Member]:
        members = [Member.from_record(row) for row in self.store.list_records(EntityType.MEMBERS)]
        return [
            member
            for member in members
            if _matches(search_term, member.name, member.member_id, member.email)
        ]

    def next_member_code(self) -> str:
        return format_member_code(self.store.count_records(EntityType.MEMBERS) + 1)

    def add_member(
        self,
        name: str | None,
        email: str | None,
        phone: str | None = None,
        address: str | None = None,
        join_date: date | None = None,
    ) -> Member:
        """Create a member with the next ``MEM0001``-style code.

        The code starts from the live member count. If that code is already
        taken, for example after a deletion or a concurrent create, the
        sequence is bumped and the insert retried.
        """

        clean_name = _require(name, "Name and email are required.")
        clean_email = _require(email, "Name and email are required.")

        sequence = self.store.count_records(EntityType.MEMBERS) + 1
        taken = {member.member_id for member in self.list_members()}
        last_error: StoreError | None = None

        for _ in range(self.member_code_attempts):
            while format_member_code(sequence) in taken:
                sequence += 1
            member_code = format_member_code(sequence)
            sequence += 1

            draft = Member(
                id="",
                member_id=member_code,
                name=clean_name,
                email=clean_email,
                phone=_clean(phone) or "",
                address=_clean(address) or "",
                join_date=join_date or date.today(),
                status=RecordStatus.ACTIVE,
            )
            try:
                created = Member.from_record(self.store.add_record(EntityType.MEMBERS, _draft(draft.as_record())))
            except DuplicateRecordError as exc:
                LOGGER.warning("Member code %s already taken; trying the next one", member_code)
                last_error = exc
                continue
            LOGGER.info("Added member %s (%s)", created.member_id, created.name)
            return created

        raise StoreError(
            f"Could not allocate a free member code after {self.member_code_attempts} attempts."
        ) from last_error

    def delete_member(self, member_id: str) -> None:
        self.store.delete_record(EntityType.MEMBERS, member_id)
        LOGGER.info("Deleted member %s", member_id)
