"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InputError(DomainException):
    """Caller supplied a value the engine refuses to interpret"""

    pass


class InvalidFrequencyError(InputError):
    """Rent frequency is not Weekly, Fortnightly or Monthly"""

    pass


class InvalidDueDayError(InputError):
    """Due day is not a weekday name or a day of month between 1 and 28"""

    pass


class InvalidSettingsError(InputError):
    """Tenancy settings are incomplete or out of range"""

    pass


class InvalidNoticeError(InputError):
    """Notice record is inconsistent (e.g. remedy notice without a debt snapshot)"""

    pass


class TenantNotFoundError(DomainException):
    """No tenancy exists for the given id"""

    pass


class NoticeNotFoundError(DomainException):
    """No notice exists for the given tenant and id"""

    pass


class RateLimitExceededError(DomainException):
    """Too many requests for the same key inside the limiter window"""

    def __init__(self, key: str, retry_after_seconds: float):
        super().__init__(f"Rate limit exceeded for {key}; retry in {retry_after_seconds:.1f}s")
        self.key = key
        self.retry_after_seconds = retry_after_seconds


class ReconciliationFailure(DomainException):
    """Ledger regeneration could not be completed"""

    pass


class LedgerIntegrityError(ReconciliationFailure):
    """Regenerated ledger does not reproduce the preserved balance"""

    pass


class RegenerationInProgressError(ReconciliationFailure):
    """A regeneration for this tenant is already being processed"""

    pass


class SettingsConflictError(ReconciliationFailure):
    """Tenant settings changed between queueing and processing a regeneration"""

    pass
