"""
Services package

Business logic for the recurring obligation engine: calendar evaluation,
overrides, settlement records, the obligation view and projections.
"""

from .obligation_service import ObligationService
from .override_resolver import OverrideResolver
from .payment_ledger import PaymentLedger
from .recurring_rule_service import RecurringRuleService
from .forecast_service import ForecastProjector, project_many

__all__ = [
    "ObligationService",
    "OverrideResolver",
    "PaymentLedger",
    "RecurringRuleService",
    "ForecastProjector",
    "project_many",
]
