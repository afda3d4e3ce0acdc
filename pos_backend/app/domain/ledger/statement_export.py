"""
Ledger statement CSV export.

Column order and the debit/credit split are a downstream import format:
every row has its amount in exactly one of Debit (Dr) or Credit (Cr).
"""

import csv
import io
import re
from datetime import date
from decimal import Decimal

from pos_backend.app.models.ledger_enums import TransactionType
from pos_backend.app.schemas.ledger import LedgerStatement, LedgerSummary

CSV_HEADERS = ["Date", "Description", "Order #", "Debit (Dr)", "Credit (Cr)", "Balance"]


def _amount(value: Decimal) -> str:
    return f"{value:.2f}"


def statement_rows(statement: LedgerStatement, summary: LedgerSummary) -> list:
    rows = [CSV_HEADERS]
    for entry in statement.entries:
        is_debit = entry.transaction_type == TransactionType.DEBIT
        rows.append([
            entry.created_at.strftime("%d %b %Y"),
            entry.description or "",
            entry.order_number or "-",
            _amount(entry.amount) if is_debit else "",
            "" if is_debit else _amount(entry.amount),
            _amount(entry.balance_after),
        ])

    rows.append([])
    rows.append(["--- Summary ---"])
    rows.append(["Customer Name", summary.full_name or ""])
    rows.append(["Phone", summary.phone or ""])
    rows.append(["Account Balance", "", "", "", "", _amount(summary.account_balance)])
    rows.append(["Total Unpaid Orders", "", "", "", "", _amount(summary.total_unpaid_amount)])
    return rows


def build_statement_csv(statement: LedgerStatement, summary: LedgerSummary) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(statement_rows(statement, summary))
    return buffer.getvalue()


def statement_filename(full_name: str, today: date) -> str:
    """Ledger_<Name_With_Underscores>_<YYYY-MM-DD>.csv"""
    name = re.sub(r"\s+", "_", (full_name or "").strip())
    name = re.sub(r"[^A-Za-z0-9_\-]", "", name) or "Customer"
    return f"Ledger_{name}_{today.isoformat()}.csv"
