"""Report aggregation package."""

from abaco.queries.reports import ReportAggregator, month_start, shift_months

__all__ = ["ReportAggregator", "month_start", "shift_months"]
