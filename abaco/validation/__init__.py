"""Budget linkage validation package."""

from abaco.validation.linkage import BudgetLinkageValidator

__all__ = ["BudgetLinkageValidator"]
