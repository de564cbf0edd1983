"""Records, stores, and financial reports for the NGO account manager."""

from .errors import (
    DonorTotalsError,
    DuplicateRecordError,
    RecordNotFoundError,
    StoreError,
    ValidationError,
)
from .models import (
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
    format_currency,
    format_member_code,
)
from .reports import ReportPeriod, ReportType, financial_summary
from .services import BackOffice
from .session import AppSession
from .store import (
    EntityType,
    HostedTableStore,
    LocalRecordStore,
    MemoryStorage,
    RecordStore,
    SessionStateStorage,
    SqliteStorage,
    TableRecordStore,
    create_record_store,
)

__all__ = [
    "AppSession",
    "BackOffice",
    "Donation",
    "DonationCategory",
    "DonationMethod",
    "Donor",
    "DonorTotalsError",
    "DuplicateRecordError",
    "EntityType",
    "Expense",
    "ExpenseCategory",
    "ExpenseStatus",
    "HostedTableStore",
    "LocalRecordStore",
    "Member",
    "MemoryStorage",
    "PaymentMethod",
    "RecordNotFoundError",
    "RecordStatus",
    "RecordStore",
    "ReportPeriod",
    "ReportType",
    "SessionStateStorage",
    "SqliteStorage",
    "StoreError",
    "TableRecordStore",
    "ValidationError",
    "create_record_store",
    "financial_summary",
    "format_currency",
    "format_member_code",
]
