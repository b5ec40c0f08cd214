"""Pydantic schemas validating inbound write payloads"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from rentwatch.domain.due_dates import resolve_due_day
from rentwatch.domain.exceptions import InputError
from rentwatch.domain.models import Expense, Frequency, NoticeType, PaymentHistoryEntry


class SettingsChangeRequest(BaseModel):
    """New rent terms for a tenancy"""

    tenant_id: str = Field(..., min_length=1)
    rent_amount: Decimal = Field(..., gt=0, decimal_places=2)
    frequency: Frequency
    due_day: Union[int, str]

    @model_validator(mode="after")
    def check_due_day(self) -> "SettingsChangeRequest":
        try:
            resolve_due_day(self.frequency, self.due_day)
        except InputError as e:
            raise ValueError(str(e)) from e
        return self


class PaymentRequest(BaseModel):
    """Money received from a tenant"""

    tenant_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    paid_on: date
    method: str = Field("bank_transfer", min_length=1)

    def to_entry(self) -> PaymentHistoryEntry:
        return PaymentHistoryEntry(amount=self.amount, date=self.paid_on, method=self.method)


class NoticeRequest(BaseModel):
    """Notice being served by email"""

    tenant_id: str = Field(..., min_length=1)
    notice_type: NoticeType
    sent_at: datetime
    due_date_for: Optional[date] = None

    @field_validator("sent_at")
    @classmethod
    def require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("sent_at must be timezone-aware")
        return value

    @model_validator(mode="after")
    def remedy_has_no_occasion(self) -> "NoticeRequest":
        if self.notice_type is NoticeType.REMEDY_NOTICE and self.due_date_for is not None:
            raise ValueError("a notice to remedy covers the whole debt, not a single due date")
        return self


class ExpenseRecord(BaseModel):
    """Deductible expense, GST inclusive"""

    spent_on: date
    vendor: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    notes: str = "IRD Compliant Record"

    def to_domain(self) -> Expense:
        return Expense(
            date=self.spent_on,
            vendor=self.vendor,
            category=self.category,
            amount=self.amount,
            notes=self.notes,
        )
