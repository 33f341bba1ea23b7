"""Key-based tensor contraction."""

from tndecomp.contraction.contractor import (
    ContractionPlan,
    contract,
    contract_with_subscripts,
    plan_contraction,
)

__all__ = ["ContractionPlan", "contract", "contract_with_subscripts", "plan_contraction"]
