"""Allocation, policy evaluation and chargeback core plus the services around it."""

from cloud_cost_governance.core.allocation import DEFAULT_ALLOCATION_RULES, allocate
from cloud_cost_governance.core.chargeback import aggregate, resolve_period
from cloud_cost_governance.core.matcher import matches
from cloud_cost_governance.core.policies import PolicyEvaluator

__all__ = [
    "DEFAULT_ALLOCATION_RULES",
    "PolicyEvaluator",
    "aggregate",
    "allocate",
    "matches",
    "resolve_period",
]
