"""Financial aggregation and CSV export over in-memory record collections.

Every function here is pure: it reads the records it is given and never
mutates them. Bad record data never raises; only an unknown report type or
period is rejected with ``ValidationError``. Records may be the dataclasses
from ``models`` or the plain dicts the record stores return.

Amounts that cannot be read as numbers become ``Decimal("NaN")`` and are
logged; totals that include them stay NaN rather than being quietly repaired.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from .errors import ValidationError
from .logging_utils import get_logger
from .models import NAN, ZERO, ExpenseStatus, parse_amount, parse_date

LOGGER = get_logger(__name__)

SURPLUS = "Surplus"
DEFICIT = "Deficit"
INVALID_MONTH = "Invalid Date"
CSV_MIME_TYPE = "text/csv"

SUMMARY_COLUMNS = ("Report Type", "Amount")
INCOME_COLUMNS = ("Date", "Category", "Amount")
EXPENSE_COLUMNS = ("Date", "Category", "Amount", "Status")


class ReportType(str, Enum):
    SUMMARY = "summary"
    INCOME = "income"
    EXPENSES = "expenses"


class ReportPeriod(str, Enum):
    ALL = "all"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


@dataclass(frozen=True)
class CategoryShare:
    category: str
    amount: Decimal
    percent: Decimal


@dataclass(frozen=True)
class MonthlyTrendRow:
    month: str
    income: Decimal
    expense: Decimal
    net: Decimal


@dataclass(frozen=True)
class ExpenseTotals:
    total: Decimal
    paid: Decimal
    approved: Decimal
    pending: Decimal


@dataclass(frozen=True)
class FinancialSummary:
    total_donations: Decimal
    total_expenses: Decimal
    net_balance: Decimal
    balance_label: str
    donation_count: int
    expense_count: int
    average_donation: Decimal
    average_expense: Decimal
    expense_ratio: Decimal
    net_margin: Decimal


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _value_label(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    if value is None:
        return ""
    return str(value)


def _choice(enum_type: type[Enum], value: Any) -> Any:
    try:
        return enum_type(_value_label(value).strip().lower())
    except ValueError as error:
        allowed = ", ".join(str(member.value) for member in enum_type)
        raise ValidationError(
            f"Unknown {enum_type.__name__} {value!r}; expected one of: {allowed}."
        ) from error


def _amount(record: Any, amount_field: str) -> Decimal:
    raw = _field(record, amount_field)
    amount = parse_amount(raw)
    if amount.is_nan():
        LOGGER.warning(
            "Record %s has a non-numeric %s (%r); totals will show NaN",
            _field(record, "id"),
            amount_field,
            raw,
        )
    return amount


def total_of(records: Iterable[Any], amount_field: str = "amount") -> Decimal:
    total = ZERO
    for record in records:
        total += _amount(record, amount_field)
    return total


def average_of(records: Sequence[Any], amount_field: str = "amount") -> Decimal:
    if not records:
        return ZERO
    return total_of(records, amount_field) / len(records)


def net_balance(donations: Iterable[Any], expenses: Iterable[Any]) -> Decimal:
    return total_of(donations) - total_of(expenses)


def balance_label(net: Decimal) -> str:
    if net.is_nan():
        return DEFICIT
    return SURPLUS if net >= 0 else DEFICIT


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """Return ``part`` as a percentage of ``whole``; a zero whole yields 0."""

    if whole.is_nan() or part.is_nan():
        return NAN
    if whole == 0:
        return ZERO
    return part / whole * 100


def top_n(
    records: Iterable[Any],
    n: int,
    date_field: str = "date",
    descending: bool = True,
) -> list[Any]:
    """Return the ``n`` most recent records.

    ``sorted`` is stable, so records sharing a date keep the order they were
    stored in. Unreadable dates sort as the oldest.
    """

    if n <= 0:
        return []

    def sort_key(record: Any) -> date:
        return parse_date(_field(record, date_field)) or date.min

    ordered = sorted(records, key=sort_key, reverse=descending)
    return ordered[:n]


def group_sum_by_category(
    records: Iterable[Any],
    category_field: str = "category",
    amount_field: str = "amount",
) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for record in records:
        category = _value_label(_field(record, category_field))
        totals[category] = totals.get(category, ZERO) + _amount(record, amount_field)
    return totals


def category_breakdown(
    records: Sequence[Any],
    category_field: str = "category",
    amount_field: str = "amount",
) -> list[CategoryShare]:
    grand_total = total_of(records, amount_field)
    totals = group_sum_by_category(records, category_field, amount_field)
    shares = [
        CategoryShare(category=category, amount=amount, percent=percent_of(amount, grand_total))
        for category, amount in totals.items()
    ]
    shares.sort(
        key=lambda share: Decimal("-Infinity") if share.amount.is_nan() else share.amount,
        reverse=True,
    )
    return shares


def month_label(value: Any) -> str:
    parsed = parse_date(value)
    if parsed is None:
        return INVALID_MONTH
    return parsed.strftime("%b %Y")


def group_sum_by_month(
    records: Iterable[Any],
    date_field: str = "date",
    amount_field: str = "amount",
) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for record in records:
        month = month_label(_field(record, date_field))
        totals[month] = totals.get(month, ZERO) + _amount(record, amount_field)
    return totals


def monthly_trend(donations: Iterable[Any], expenses: Iterable[Any]) -> list[MonthlyTrendRow]:
    income_by_month = group_sum_by_month(donations)
    expense_by_month = group_sum_by_month(expenses)

    months = list(income_by_month)
    months.extend(month for month in expense_by_month if month not in income_by_month)

    rows: list[MonthlyTrendRow] = []
    for month in months:
        income = income_by_month.get(month, ZERO)
        expense = expense_by_month.get(month, ZERO)
        rows.append(MonthlyTrendRow(month=month, income=income, expense=expense, net=income - expense))
    return rows


def expense_status_totals(expenses: Iterable[Any]) -> ExpenseTotals:
    by_status = {status: ZERO for status in ExpenseStatus}
    total = ZERO
    for expense in expenses:
        amount = _amount(expense, "amount")
        total += amount
        raw_status = _value_label(_field(expense, "status")).strip().lower()
        try:
            status = ExpenseStatus(raw_status)
        except ValueError:
            LOGGER.warning("Expense %s has unknown status %r", _field(expense, "id"), raw_status)
            continue
        by_status[status] += amount
    return ExpenseTotals(
        total=total,
        paid=by_status[ExpenseStatus.PAID],
        approved=by_status[ExpenseStatus.APPROVED],
        pending=by_status[ExpenseStatus.PENDING],
    )


def financial_summary(donations: Sequence[Any], expenses: Sequence[Any]) -> FinancialSummary:
    total_donations = total_of(donations)
    total_expenses = total_of(expenses)
    net = total_donations - total_expenses
    return FinancialSummary(
        total_donations=total_donations,
        total_expenses=total_expenses,
        net_balance=net,
        balance_label=balance_label(net),
        donation_count=len(donations),
        expense_count=len(expenses),
        average_donation=average_of(donations),
        average_expense=average_of(expenses),
        expense_ratio=percent_of(total_expenses, total_donations),
        net_margin=percent_of(net, total_donations),
    )


def _period_start(period: ReportPeriod, today: date) -> date | None:
    if period is ReportPeriod.MONTH:
        return today.replace(day=1)
    if period is ReportPeriod.QUARTER:
        first_month = 3 * ((today.month - 1) // 3) + 1
        return date(today.year, first_month, 1)
    if period is ReportPeriod.YEAR:
        return date(today.year, 1, 1)
    return None


def filter_by_period(
    records: Iterable[Any],
    period: ReportPeriod | str,
    today: date | None = None,
    date_field: str = "date",
) -> list[Any]:
    """Keep the records dated inside the current month, quarter, or year.

    ``ReportPeriod.ALL`` keeps everything, including records whose date cannot
    be read; the narrower periods drop those.
    """

    selected = _choice(ReportPeriod, period)
    anchor = today or date.today()
    start = _period_start(selected, anchor)
    if start is None:
        return list(records)

    kept: list[Any] = []
    for record in records:
        occurred_on = parse_date(_field(record, date_field))
        if occurred_on is not None and start <= occurred_on <= anchor:
            kept.append(record)
    return kept


def _csv_value(value: Any) -> str:
    if isinstance(value, Decimal):
        if value.is_nan():
            return "NaN"
        return format(value.normalize(), "f")
    if isinstance(value, float):
        if value != value:
            return "NaN"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, date):
        return value.isoformat()
    return _value_label(value)


def to_csv(rows: Iterable[Mapping[str, Any]], columns: Sequence[str]) -> str:
    """Serialise ``rows`` under a header of ``columns``.

    Values are joined with bare commas; a value that itself contains a comma
    shifts the rest of its line.
    """

    lines = [",".join(columns)]
    for row in rows:
        lines.append(",".join(_csv_value(row.get(column)) for column in columns))
    return "\n".join(lines) + "\n"


def summary_rows(donations: Sequence[Any], expenses: Sequence[Any]) -> list[dict[str, Any]]:
    total_donations = total_of(donations)
    total_expenses = total_of(expenses)
    return [
        {"Report Type": "Total Donations", "Amount": total_donations},
        {"Report Type": "Total Expenses", "Amount": total_expenses},
        {"Report Type": "Net Balance", "Amount": total_donations - total_expenses},
    ]


def income_rows(donations: Iterable[Any]) -> list[dict[str, Any]]:
    return [
        {
            "Date": _field(donation, "date"),
            "Category": _field(donation, "category"),
            "Amount": _amount(donation, "amount"),
        }
        for donation in donations
    ]


def expense_rows(expenses: Iterable[Any]) -> list[dict[str, Any]]:
    return [
        {
            "Date": _field(expense, "date"),
            "Category": _field(expense, "category"),
            "Amount": _amount(expense, "amount"),
            "Status": _field(expense, "status"),
        }
        for expense in expenses
    ]


def export_report(
    report_type: ReportType | str,
    donations: Sequence[Any],
    expenses: Sequence[Any],
) -> str:
    selected = _choice(ReportType, report_type)
    if selected is ReportType.INCOME:
        return to_csv(income_rows(donations), INCOME_COLUMNS)
    if selected is ReportType.EXPENSES:
        return to_csv(expense_rows(expenses), EXPENSE_COLUMNS)
    return to_csv(summary_rows(donations, expenses), SUMMARY_COLUMNS)


def export_file_name(report_type: ReportType | str, today: date | None = None) -> str:
    stamp = (today or date.today()).isoformat()
    return f"ngo_{_choice(ReportType, report_type).value}_report_{stamp}.csv"
