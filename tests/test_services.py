from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Mapping

import pytest

from ngo_accounts.errors import DonorTotalsError, DuplicateRecordError, StoreError, ValidationError
from ngo_accounts.models import ExpenseStatus
from ngo_accounts.services import BackOffice
from ngo_accounts.store import EntityType, LocalRecordStore, MemoryStorage


def _build_office(member_code_attempts: int = 5) -> BackOffice:
    return BackOffice(LocalRecordStore(MemoryStorage()), member_code_attempts=member_code_attempts)


class _FailingStore(LocalRecordStore):
    def __init__(self) -> None:
        super().__init__(MemoryStorage())
        self.writes = 0

    def add_record(self, entity: EntityType, record: Mapping[str, Any]) -> dict[str, Any]:
        self.writes += 1
        raise StoreError("backend unavailable")


class _TotalsDownStore(LocalRecordStore):
    def update_record(
        self,
        entity: EntityType,
        record_id: str,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        raise StoreError("donor table locked")


class _ClashingStore(LocalRecordStore):
    """Rejects the first ``clashes`` member inserts as duplicates."""

    def __init__(self, clashes: int) -> None:
        super().__init__(MemoryStorage())
        self.clashes = clashes
        self.attempted_codes: list[str] = []

    def add_record(self, entity: EntityType, record: Mapping[str, Any]) -> dict[str, Any]:
        if entity is EntityType.MEMBERS:
            self.attempted_codes.append(record["member_id"])
            if self.clashes > 0:
                self.clashes -= 1
                raise DuplicateRecordError("member_id taken")
        return super().add_record(entity, record)


def test_record_donation_recomputes_donor_totals() -> None:
    office = _build_office()
    donor = office.add_donor(name="  Avery Mills ", email="avery@example.org")

    office.record_donation(donor.id, "100", date(2024, 1, 15), method="cash", category="education")
    office.record_donation(donor.id, 50.25, "2024-03-01", method="online", category="general")
    office.record_donation(donor.id, "10", "2024-02-01")

    refreshed = office.get_donor(donor.id)
    assert refreshed is not None
    assert refreshed.name == "Avery Mills"
    assert refreshed.total_donations == Decimal("160.25")
    assert refreshed.last_donation == "2024-03-01"

    donations = office.list_donations()
    assert {donation.donor_name for donation in donations} == {"Avery Mills"}
    assert sum(donation.amount for donation in donations) == refreshed.total_donations


def test_record_donation_validates_before_writing() -> None:
    office = _build_office()
    donor = office.add_donor(name="Jordan Lee")

    with pytest.raises(ValidationError):
        office.record_donation(donor.id, "-5", "2024-01-01")
    with pytest.raises(ValidationError):
        office.record_donation(donor.id, "abc", "2024-01-01")
    with pytest.raises(ValidationError):
        office.record_donation(donor.id, "5", "not a date")
    with pytest.raises(ValidationError):
        office.record_donation("", "5", "2024-01-01")
    with pytest.raises(ValidationError):
        office.record_donation("missing", "5", "2024-01-01")
    with pytest.raises(ValidationError):
        office.record_donation(donor.id, "5", "2024-01-01", method="barter")

    assert office.list_donations() == []


def test_add_donor_requires_name_and_search_matches() -> None:
    office = _build_office()

    with pytest.raises(ValidationError):
        office.add_donor(name="   ")

    office.add_donor(name="Avery Mills", email="avery@example.org")
    office.add_donor(name="Jordan Lee", email="jordan@charity.org")

    assert [donor.name for donor in office.list_donors("CHARITY")] == ["Jordan Lee"]
    assert len(office.list_donors()) == 2


def test_expense_flow_and_status_update() -> None:
    office = _build_office()

    with pytest.raises(ValidationError):
        office.add_expense(description="", amount="10", expense_date="2024-01-01")

    expense = office.add_expense(
        description="Printer paper",
        amount="42.50",
        expense_date="2024-04-02",
        category="supplies",
        vendor="Paper Co",
    )
    assert expense.status is ExpenseStatus.PENDING

    updated = office.update_expense_status(expense.id, "Paid")

    assert updated.status is ExpenseStatus.PAID
    assert office.list_expenses()[0].status is ExpenseStatus.PAID
    with pytest.raises(ValidationError):
        office.update_expense_status(expense.id, "refunded")


def test_member_code_follows_count() -> None:
    office = _build_office()
    for name in ("Ana", "Ben", "Cleo"):
        office.add_member(name=name, email=f"{name.lower()}@example.org")

    assert office.next_member_code() == "MEM0004"
    member = office.add_member(name="Dev", email="dev@example.org", join_date=date(2024, 1, 1))

    assert member.member_id == "MEM0004"
    assert member.join_date == date(2024, 1, 1)


def test_member_code_skips_codes_taken_after_delete() -> None:
    office = _build_office()
    first = office.add_member(name="Ana", email="ana@example.org")
    office.add_member(name="Ben", email="ben@example.org")
    office.delete_member(first.id)

    member = office.add_member(name="Cleo", email="cleo@example.org")

    assert member.member_id == "MEM0003"
    codes = [existing.member_id for existing in office.list_members()]
    assert len(codes) == len(set(codes))


def test_member_code_retries_on_backend_duplicate() -> None:
    store = _ClashingStore(clashes=2)
    office = BackOffice(store, member_code_attempts=5)

    member = office.add_member(name="Ana", email="ana@example.org")

    assert store.attempted_codes == ["MEM0001", "MEM0002", "MEM0003"]
    assert member.member_id == "MEM0003"


def test_member_code_gives_up_after_attempts() -> None:
    office = BackOffice(_ClashingStore(clashes=10), member_code_attempts=2)

    with pytest.raises(StoreError):
        office.add_member(name="Ana", email="ana@example.org")


def test_add_member_requires_name_and_email() -> None:
    office = _build_office()

    with pytest.raises(ValidationError):
        office.add_member(name="Ana", email="")
    assert office.list_members() == []


def test_store_errors_propagate() -> None:
    store = _FailingStore()
    office = BackOffice(store)

    with pytest.raises(StoreError):
        office.add_donor(name="Avery Mills")
    with pytest.raises(ValidationError):
        office.add_expense(description="", amount="1", expense_date="2024-01-01")

    assert store.writes == 1
    assert office.list_donors() == []


def test_amounts_with_fractional_cents_are_rejected() -> None:
    office = _build_office()
    donor = office.add_donor(name="Avery Mills")

    with pytest.raises(ValidationError):
        office.record_donation(donor.id, "10.005", "2024-01-01")
    with pytest.raises(ValidationError):
        office.add_expense(description="Fuel", amount="3.141", expense_date="2024-01-01")

    donation = office.record_donation(donor.id, "10.50", "2024-01-01")
    assert donation.amount == Decimal("10.50")
    assert office.list_expenses() == []


def test_saved_donation_with_failed_total_refresh_is_reported_as_saved() -> None:
    office = BackOffice(_TotalsDownStore(MemoryStorage()))
    donor = office.add_donor(name="Avery Mills")

    with pytest.raises(DonorTotalsError, match="was saved"):
        office.record_donation(donor.id, "25", "2024-01-01")

    assert len(office.list_donations()) == 1
