"""Residential Tenancies Act 1986 thresholds.

These values are set by statute and must not change without legal review.

- s55(1)(a): 21 days in arrears
- s55(1)(aa): 3 strikes within 90 days
- s56: 14-day notice to remedy
"""

from decimal import Decimal

# Strike tiers: working days overdue before tier k may be issued
STRIKE_TIER_THRESHOLDS = {1: 5, 2: 10, 3: 15}
MAX_STRIKES = 3

# Separate-occasion rule: a due date must be this far overdue to be struck
STRIKE_NOTICE_WORKING_DAYS = 5

# Calendar-day periods
STRIKE_WINDOW_DAYS = 90
REMEDY_PERIOD_DAYS = 14
TRIBUNAL_FILING_WINDOW_DAYS = 28
TERMINATION_ARREARS_DAYS = 21

# Email service: sent before 17:00 NZ time on a working day = served that day
SERVICE_CUTOFF_HOUR = 17

# Due-date generation guards
DEFAULT_MAX_PERIODS = 100
LOOKAHEAD_CAP_DAYS = 366
MAX_MONTHLY_DUE_DAY = 28

# Money
CENT = Decimal("0.01")
GST_FRACTION_NUMERATOR = 3
GST_FRACTION_DENOMINATOR = 23
