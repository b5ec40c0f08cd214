"""IR3R expense export with GST extraction"""

import csv
import io
from decimal import ROUND_HALF_UP, Decimal
from typing import IO, Iterable

from rentwatch.domain.constants import CENT, GST_FRACTION_DENOMINATOR, GST_FRACTION_NUMERATOR
from rentwatch.domain.models import Expense
from rentwatch.utils.money import to_money

EXPORT_HEADER = ["Date", "Vendor", "Category", "Amount (Incl GST)", "GST Component", "Notes"]


def gst_component(amount_incl_gst: Decimal) -> Decimal:
    """GST share of a GST-inclusive amount at 15% (3/23 of the total)"""
    gst = to_money(amount_incl_gst) * GST_FRACTION_NUMERATOR / GST_FRACTION_DENOMINATOR
    return gst.quantize(CENT, rounding=ROUND_HALF_UP)


def write_expenses_csv(expenses: Iterable[Expense], stream: IO[str]) -> int:
    """Write the export to an open text stream, returning the number of rows"""
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(EXPORT_HEADER)
    count = 0
    for expense in expenses:
        amount = to_money(expense.amount)
        writer.writerow(
            [
                expense.date.isoformat(),
                expense.vendor,
                expense.category,
                f"{amount:.2f}",
                f"{gst_component(amount):.2f}",
                expense.notes,
            ]
        )
        count += 1
    return count


def export_expenses_csv(expenses: Iterable[Expense]) -> str:
    buffer = io.StringIO()
    write_expenses_csv(expenses, buffer)
    return buffer.getvalue()
