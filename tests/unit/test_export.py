"""Unit tests for the IR3R expense export"""

import io
from datetime import date
from decimal import Decimal
from rentwatch.domain.export import EXPORT_HEADER, export_expenses_csv, gst_component, write_expenses_csv
from rentwatch.domain.models import Expense


def test_gst_component_of_round_amount():
    assert gst_component(Decimal("115.00")) == Decimal("15.00")


def test_gst_component_rounds_to_cents():
    assert gst_component(Decimal("100")) == Decimal("13.04")


def test_empty_export_has_header_only():
    assert export_expenses_csv([]) == ",".join(EXPORT_HEADER) + "\n"


def test_rows_follow_header():
    expenses = [
        Expense(date=date(2026, 3, 2), vendor="Bunnings", category="Repairs", amount=Decimal("115")),
        Expense(date=date(2026, 3, 9), vendor="Smith, Jones & Co", category="Legal", amount=Decimal("100"), notes="Lease review"),
    ]

    lines = export_expenses_csv(expenses).splitlines()

    assert lines[0] == "Date,Vendor,Category,Amount (Incl GST),GST Component,Notes"
    assert lines[1] == "2026-03-02,Bunnings,Repairs,115.00,15.00,IRD Compliant Record"
    assert lines[2] == '2026-03-09,"Smith, Jones & Co",Legal,100.00,13.04,Lease review'


def test_write_to_stream_returns_row_count():
    stream = io.StringIO()
    expenses = [Expense(date=date(2026, 3, 2), vendor="Bunnings", category="Repairs", amount=Decimal("23"))]

    assert write_expenses_csv(expenses, stream) == 1
    assert stream.getvalue().endswith("23.00,3.00,IRD Compliant Record\n")
