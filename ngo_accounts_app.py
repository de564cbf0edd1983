"""Streamlit back office for NGO donations, expenses, members, and reports."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable

import pandas as pd
import streamlit as st

from ngo_accounts import (
    AppSession,
    BackOffice,
    DonationCategory,
    DonationMethod,
    DonorTotalsError,
    ExpenseCategory,
    ExpenseStatus,
    PaymentMethod,
    ReportPeriod,
    ReportType,
    SessionStateStorage,
    StoreError,
    create_record_store,
    financial_summary,
    format_currency,
)
from ngo_accounts.configuration import get_settings
from ngo_accounts.logging_utils import configure_root_logger
from ngo_accounts.reports import (
    CSV_MIME_TYPE,
    category_breakdown,
    expense_status_totals,
    export_file_name,
    export_report,
    filter_by_period,
    monthly_trend,
    percent_of,
    top_n,
)

PERIOD_LABELS = {
    ReportPeriod.ALL: "All Time",
    ReportPeriod.MONTH: "This Month",
    ReportPeriod.QUARTER: "This Quarter",
    ReportPeriod.YEAR: "This Year",
}


@st.cache_resource
def _back_office() -> BackOffice:
    settings = get_settings()
    configure_root_logger(settings.log_level)
    return BackOffice(
        create_record_store(settings),
        member_code_attempts=settings.member_code_attempts,
    )


def _inject_styles() -> None:
    st.markdown(
        """
        <style>
          .metric-card {
            background: #ffffff;
            border: 1px solid rgba(201, 199, 197, 0.7);
            border-radius: 14px;
            padding: 0.85rem 1rem;
            min-height: 112px;
          }
          .metric-label { font-size: 0.82rem; color: #3e3e3c; margin: 0; }
          .metric-value { font-size: 1.55rem; font-weight: 700; margin: 0.2rem 0; }
          .metric-sub { font-size: 0.78rem; color: #5c5c5c; margin: 0; }
          .section-note { color: #5c5c5c; margin-top: -0.4rem; }
        </style>
        """,
        unsafe_allow_html=True,
    )


def _render_metric_card(title: str, value: str, subtitle: str) -> None:
    st.markdown(
        f"""
        <div class="metric-card">
          <p class="metric-label">{title}</p>
          <p class="metric-value">{value}</p>
          <p class="metric-sub">{subtitle}</p>
        </div>
        """,
        unsafe_allow_html=True,
    )


def _section(title: str, note: str) -> None:
    st.markdown(f"### {title}")
    st.markdown(f"<p class='section-note'>{note}</p>", unsafe_allow_html=True)


def _table_or_info(frame: pd.DataFrame, empty_message: str) -> None:
    if frame.empty:
        st.info(empty_message)
        return
    st.dataframe(frame, use_container_width=True, hide_index=True)


def _display_date(value: date | None) -> str:
    return value.strftime("%m/%d/%Y") if value is not None else "-"


def _percent(value: Decimal) -> str:
    return f"{value:.1f}%"


def _render_breakdown(records: Iterable, empty_message: str) -> None:
    shares = category_breakdown(list(records))
    if not shares:
        st.info(empty_message)
        return
    for share in shares:
        st.markdown(f"**{share.category.replace('_', ' ').title()}** {format_currency(share.amount)}")
        if not share.percent.is_nan():
            st.progress(min(max(float(share.percent) / 100, 0.0), 1.0))
        st.caption(f"{_percent(share.percent)} of total")


def render_sign_in(session: AppSession) -> None:
    st.markdown("## NGO Account Manager")
    st.markdown(
        "<p class='section-note'>Manage donations, expenses, and financial reports.</p>",
        unsafe_allow_html=True,
    )
    with st.form("sign-in-form"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        if st.form_submit_button("Sign In", use_container_width=True):
            try:
                session.sign_in(email, password)
                st.rerun()
            except ValueError as exc:
                st.error(str(exc))


def render_dashboard(office: BackOffice) -> None:
    _section("Dashboard", "Overview of donations, donors, and spending.")

    try:
        donations = office.list_donations()
        expenses = office.list_expenses()
        donors = office.list_donors()
    except StoreError as exc:
        st.error(f"Could not load records: {exc}")
        return

    summary = financial_summary(donations, expenses)
    columns = st.columns(4)
    with columns[0]:
        _render_metric_card(
            "Total Donations",
            format_currency(summary.total_donations),
            f"{summary.donation_count} donations",
        )
    with columns[1]:
        _render_metric_card("Active Donors", str(len(donors)), f"{len(donors)} registered")
    with columns[2]:
        _render_metric_card(
            "Total Expenses",
            format_currency(summary.total_expenses),
            f"{summary.expense_count} transactions",
        )
    with columns[3]:
        _render_metric_card("Net Balance", format_currency(summary.net_balance), summary.balance_label)

    left, right = st.columns(2, gap="large")
    with left:
        st.markdown("#### Recent Donations")
        recent_donations = pd.DataFrame(
            [
                {
                    "Donor": donation.donor_name,
                    "Date": _display_date(donation.date),
                    "Amount": format_currency(donation.amount),
                }
                for donation in top_n(donations, 5)
            ]
        )
        _table_or_info(recent_donations, "No donations yet.")
    with right:
        st.markdown("#### Recent Expenses")
        recent_expenses = pd.DataFrame(
            [
                {
                    "Description": expense.description,
                    "Date": _display_date(expense.date),
                    "Amount": format_currency(expense.amount),
                }
                for expense in top_n(expenses, 5)
            ]
        )
        _table_or_info(recent_expenses, "No expenses yet.")


def render_donors_tab(office: BackOffice) -> None:
    _section("Donors", "Donor records with running donation totals.")

    left, right = st.columns([1, 1.6], gap="large")
    with left:
        st.markdown("#### Add Donor")
        with st.form("donor-create-form", clear_on_submit=True):
            name = st.text_input("Full Name *")
            email = st.text_input("Email")
            phone = st.text_input("Phone")
            address = st.text_input("Address")
            if st.form_submit_button("Add Donor", use_container_width=True):
                try:
                    office.add_donor(name=name, email=email, phone=phone, address=address)
                    st.success("Donor added.")
                    st.rerun()
                except (ValueError, StoreError) as exc:
                    st.error(str(exc))

    with right:
        search_term = st.text_input("Search donors", key="donor-search", placeholder="Name or email")
        try:
            donors = office.list_donors(search_term=search_term)
        except StoreError as exc:
            st.error(f"Could not load donors: {exc}")
            return

        st.markdown(f"#### All Donors ({len(donors)})")
        donors_df = pd.DataFrame(
            [
                {
                    "Name": donor.name,
                    "Email": donor.email or "-",
                    "Phone": donor.phone or "-",
                    "Total Donations": format_currency(donor.total_donations),
                    "Last Donation": donor.last_donation,
                    "Status": donor.status.label,
                }
                for donor in donors
            ]
        )
        _table_or_info(donors_df, "No donors found.")

        if donors:
            donor_map = {donor.id: donor for donor in donors}
            delete_cols = st.columns([3, 1])
            with delete_cols[0]:
                selected = st.selectbox(
                    "Donor to delete",
                    options=list(donor_map),
                    format_func=lambda item_id: f"{donor_map[item_id].name} ({donor_map[item_id].email or '-'})",
                    key="donor-delete-choice",
                )
            with delete_cols[1]:
                st.markdown("<br>", unsafe_allow_html=True)
                if st.button("Delete", key="donor-delete", use_container_width=True):
                    try:
                        office.delete_donor(selected)
                        st.success("Donor deleted.")
                        st.rerun()
                    except StoreError as exc:
                        st.error(str(exc))


def render_donations_tab(office: BackOffice) -> None:
    _section("Donations", "Record and review incoming donations.")

    try:
        donors = office.list_donors()
        donations = office.list_donations()
    except StoreError as exc:
        st.error(f"Could not load donations: {exc}")
        return

    if not donors:
        st.info("Add a donor first, then record donations.")
    else:
        donor_map = {donor.id: donor for donor in donors}
        with st.form("donation-create-form", clear_on_submit=True):
            left, right = st.columns(2)
            with left:
                donor_id = st.selectbox(
                    "Donor",
                    options=list(donor_map),
                    format_func=lambda item_id: donor_map[item_id].name,
                )
                amount = st.number_input("Amount ($)", min_value=0.0, step=10.0, format="%.2f")
                donation_date = st.date_input("Date", value=date.today())
            with right:
                method = st.selectbox(
                    "Payment Method",
                    options=list(DonationMethod),
                    format_func=lambda item: item.label,
                )
                category = st.selectbox(
                    "Category",
                    options=list(DonationCategory),
                    format_func=lambda item: item.label,
                )
                notes = st.text_area("Notes", height=80)
            if st.form_submit_button("Add Donation", use_container_width=True):
                try:
                    office.record_donation(
                        donor_id=donor_id,
                        amount=str(amount),
                        donation_date=donation_date,
                        method=method,
                        category=category,
                        notes=notes,
                    )
                    st.success("Donation recorded.")
                    st.rerun()
                except DonorTotalsError as exc:
                    st.warning(str(exc))
                except (ValueError, StoreError) as exc:
                    st.error(str(exc))

    summary = financial_summary(donations, [])
    stat_cols = st.columns(2)
    with stat_cols[0]:
        _render_metric_card(
            "Total Donations",
            format_currency(summary.total_donations),
            f"{summary.donation_count} transactions",
        )
    with stat_cols[1]:
        _render_metric_card("Average Donation", format_currency(summary.average_donation), "Per gift")

    st.markdown("#### Donation History")
    donations_df = pd.DataFrame(
        [
            {
                "Date": _display_date(donation.date),
                "Donor": donation.donor_name,
                "Amount": format_currency(donation.amount),
                "Method": donation.method.label,
                "Category": donation.category.label,
                "Notes": donation.notes or "-",
            }
            for donation in top_n(donations, len(donations))
        ]
    )
    _table_or_info(donations_df, "No donations recorded yet.")


def render_expenses_tab(office: BackOffice) -> None:
    _section("Expenses", "Monitor and manage organisational expenses.")

    with st.form("expense-create-form", clear_on_submit=True):
        left, right = st.columns(2)
        with left:
            description = st.text_input("Description *", placeholder="Office supplies purchase")
            amount = st.number_input("Amount ($)", min_value=0.0, step=10.0, format="%.2f")
            expense_date = st.date_input("Date", value=date.today())
            category = st.selectbox(
                "Category",
                options=list(ExpenseCategory),
                format_func=lambda item: item.label,
            )
        with right:
            payment_method = st.selectbox(
                "Payment Method",
                options=list(PaymentMethod),
                format_func=lambda item: item.label,
            )
            vendor = st.text_input("Vendor")
            status = st.selectbox(
                "Status",
                options=list(ExpenseStatus),
                format_func=lambda item: item.label,
            )
            notes = st.text_area("Notes", height=80)
        if st.form_submit_button("Add Expense", use_container_width=True):
            try:
                office.add_expense(
                    description=description,
                    amount=str(amount),
                    expense_date=expense_date,
                    category=category,
                    payment_method=payment_method,
                    vendor=vendor,
                    notes=notes,
                    status=status,
                )
                st.success("Expense added.")
                st.rerun()
            except (ValueError, StoreError) as exc:
                st.error(str(exc))

    try:
        expenses = office.list_expenses()
    except StoreError as exc:
        st.error(f"Could not load expenses: {exc}")
        return

    totals = expense_status_totals(expenses)
    stat_cols = st.columns(3)
    with stat_cols[0]:
        _render_metric_card("Total Expenses", format_currency(totals.total), f"{len(expenses)} transactions")
    with stat_cols[1]:
        _render_metric_card("Paid", format_currency(totals.paid), "Settled")
    with stat_cols[2]:
        _render_metric_card("Pending", format_currency(totals.pending), "Awaiting approval")

    if expenses:
        st.markdown("#### Update Status")
        expense_map = {expense.id: expense for expense in expenses}
        status_cols = st.columns([2, 1, 0.7])
        with status_cols[0]:
            expense_id = st.selectbox(
                "Expense",
                options=list(expense_map),
                format_func=lambda item_id: (
                    f"{expense_map[item_id].description} | {format_currency(expense_map[item_id].amount)}"
                ),
                key="expense-status-record",
            )
        with status_cols[1]:
            statuses = list(ExpenseStatus)
            next_status = st.selectbox(
                "New Status",
                options=statuses,
                index=statuses.index(expense_map[expense_id].status),
                format_func=lambda item: item.label,
                key="expense-status-value",
            )
        with status_cols[2]:
            st.markdown("<br>", unsafe_allow_html=True)
            if st.button("Update", key="expense-status-update", use_container_width=True):
                try:
                    office.update_expense_status(expense_id, next_status)
                    st.success("Expense status updated.")
                    st.rerun()
                except (ValueError, StoreError) as exc:
                    st.error(str(exc))

    st.markdown("#### Expense History")
    expenses_df = pd.DataFrame(
        [
            {
                "Date": _display_date(expense.date),
                "Description": expense.description,
                "Vendor": expense.vendor or "-",
                "Category": expense.category.label,
                "Amount": format_currency(expense.amount),
                "Payment": expense.payment_method.label,
                "Status": expense.status.label,
            }
            for expense in top_n(expenses, len(expenses))
        ]
    )
    _table_or_info(expenses_df, "No expenses recorded yet.")


def render_members_tab(office: BackOffice) -> None:
    _section("Members", "Savings group members and their balances.")

    left, right = st.columns([1, 1.6], gap="large")
    with left:
        st.markdown("#### Add Member")
        with st.form("member-create-form", clear_on_submit=True):
            name = st.text_input("Full Name *")
            email = st.text_input("Email *")
            phone = st.text_input("Phone")
            address = st.text_input("Address")
            if st.form_submit_button("Add Member", use_container_width=True):
                try:
                    member = office.add_member(name=name, email=email, phone=phone, address=address)
                    st.success(f"Member {member.name} added as {member.member_id}.")
                    st.rerun()
                except (ValueError, StoreError) as exc:
                    st.error(f"Failed to add member: {exc}")

    with right:
        search_term = st.text_input(
            "Search members",
            key="member-search",
            placeholder="Name, member ID, or email",
        )
        try:
            members = office.list_members(search_term=search_term)
        except StoreError as exc:
            st.error(f"Could not load members: {exc}")
            return

        st.markdown(f"#### All Members ({len(members)})")
        members_df = pd.DataFrame(
            [
                {
                    "Member ID": member.member_id,
                    "Name": member.name,
                    "Email": member.email,
                    "Phone": member.phone or "-",
                    "Joined": _display_date(member.join_date),
                    "Savings": format_currency(member.total_savings),
                    "Loans": format_currency(member.total_loans),
                    "Status": member.status.label,
                }
                for member in reversed(members)
            ]
        )
        _table_or_info(members_df, "No members found.")

        if members:
            member_map = {member.id: member for member in members}
            delete_cols = st.columns([3, 1])
            with delete_cols[0]:
                selected = st.selectbox(
                    "Member to delete",
                    options=list(member_map),
                    format_func=lambda item_id: f"{member_map[item_id].member_id} {member_map[item_id].name}",
                    key="member-delete-choice",
                )
            with delete_cols[1]:
                st.markdown("<br>", unsafe_allow_html=True)
                if st.button("Delete", key="member-delete", use_container_width=True):
                    try:
                        office.delete_member(selected)
                        st.success("Member deleted.")
                        st.rerun()
                    except StoreError as exc:
                        st.error(f"Failed to delete member: {exc}")


def _export_button(report_type: ReportType, donations: list, expenses: list) -> None:
    st.download_button(
        "Export CSV",
        data=export_report(report_type, donations, expenses).encode("utf-8"),
        file_name=export_file_name(report_type),
        mime=CSV_MIME_TYPE,
        key=f"export-{report_type.value}",
    )


def render_reports_tab(office: BackOffice) -> None:
    _section("Financial Reports", "Comprehensive financial analysis and insights.")

    period = st.selectbox(
        "Period",
        options=list(ReportPeriod),
        format_func=lambda item: PERIOD_LABELS[item],
        key="report-period",
    )

    try:
        donations = filter_by_period(office.list_donations(), period)
        expenses = filter_by_period(office.list_expenses(), period)
    except StoreError as exc:
        st.error(f"Could not load records: {exc}")
        return

    summary = financial_summary(donations, expenses)
    columns = st.columns(3)
    with columns[0]:
        _render_metric_card(
            "Total Income",
            format_currency(summary.total_donations),
            f"{summary.donation_count} donations",
        )
    with columns[1]:
        _render_metric_card(
            "Total Expenses",
            format_currency(summary.total_expenses),
            f"{summary.expense_count} transactions",
        )
    with columns[2]:
        _render_metric_card(
            "Net Balance",
            format_currency(summary.net_balance),
            f"{summary.balance_label} ({_percent(summary.net_margin)})",
        )

    summary_tab, income_tab, expenses_tab, trends_tab = st.tabs(
        ["Summary", "Income Analysis", "Expense Analysis", "Trends"]
    )

    with summary_tab:
        left, right = st.columns(2, gap="large")
        with left:
            st.markdown("#### Income Statement")
            statement = pd.DataFrame(
                [
                    {"Line": "Total Revenue (Donations)", "Amount": format_currency(summary.total_donations)},
                    {"Line": "Total Expenses", "Amount": f"-{format_currency(summary.total_expenses)}"},
                    {"Line": "Net Income", "Amount": format_currency(summary.net_balance)},
                ]
            )
            _table_or_info(statement, "No figures yet.")
            _export_button(ReportType.SUMMARY, donations, expenses)
        with right:
            st.markdown("#### Key Metrics")
            st.metric("Average Donation", format_currency(summary.average_donation))
            st.metric("Average Expense", format_currency(summary.average_expense))
            st.metric("Expense Ratio", _percent(summary.expense_ratio))
            if not summary.expense_ratio.is_nan():
                st.progress(min(float(summary.expense_ratio) / 100, 1.0))

    with income_tab:
        st.markdown("#### Income by Category")
        _render_breakdown(donations, "No income data available.")
        _export_button(ReportType.INCOME, donations, expenses)

    with expenses_tab:
        st.markdown("#### Expenses by Category")
        _render_breakdown(expenses, "No expense data available.")
        _export_button(ReportType.EXPENSES, donations, expenses)

    with trends_tab:
        st.markdown("#### Monthly Trends")
        trend_rows = monthly_trend(donations, expenses)
        trend_df = pd.DataFrame(
            [
                {
                    "Month": row.month,
                    "Income": format_currency(row.income),
                    "Expenses": format_currency(row.expense),
                    "Net": format_currency(row.net),
                    "Margin": _percent(percent_of(row.net, row.income)),
                }
                for row in trend_rows
            ]
        )
        _table_or_info(trend_df, "No trend data available.")
        if trend_rows:
            chart_df = pd.DataFrame(
                {
                    "Income": [float(row.income) for row in trend_rows],
                    "Expenses": [float(row.expense) for row in trend_rows],
                },
                index=[row.month for row in trend_rows],
            )
            st.bar_chart(chart_df)


def main() -> None:
    st.set_page_config(
        page_title="NGO Account Manager",
        page_icon=":seedling:",
        layout="wide",
    )
    _inject_styles()

    session = AppSession(SessionStateStorage(st.session_state))
    if not session.is_authenticated:
        render_sign_in(session)
        return

    try:
        office = _back_office()
    except StoreError as exc:
        st.error(f"Record store unavailable: {exc}")
        return

    with st.sidebar:
        st.markdown("**NGO Account Manager**")
        st.caption(f"Environment: {get_settings().environment}")
        if st.button("Sign Out", use_container_width=True):
            session.sign_out()
            st.rerun()

    tabs = st.tabs(["Dashboard", "Donors", "Donations", "Expenses", "Members", "Reports"])
    with tabs[0]:
        render_dashboard(office)
    with tabs[1]:
        render_donors_tab(office)
    with tabs[2]:
        render_donations_tab(office)
    with tabs[3]:
        render_expenses_tab(office)
    with tabs[4]:
        render_members_tab(office)
    with tabs[5]:
        render_reports_tab(office)


if __name__ == "__main__":
    main()
