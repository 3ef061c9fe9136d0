"""
Settlement and classification engines.

This module contains engines for:
- Pay calculation: Driver and carrier payable lines from rate profiles
- Payables: Manual pay line edits
- Assignments: Profile assignment with a single default per subject
- Dispatch: Driver/carrier assignment and pay-affecting edits
- Invoicing: Invoice amounts, line items and lifecycle
- Classification: Lane matching, imports and promotions
- Reconciliation: External shipment sync
- Scheduler: Periodic sync dispatch
- Stats: Aggregate counters and drift repair
"""

from .assignments import ProfileAssignmentEngine
from .base import BaseEngine
from .classification import ClassificationEngine, LaneDefinition, PromotionResult
from .dispatch import DispatchEngine
from .invoicing import InvoiceAmounts, InvoiceEngine, calculate_invoice_amounts
from .pay_calculation import PayCalculationEngine, PayCalculationResult
from .payables import PayablesEngine
from .profile_selector import determine_profile
from .reconciliation import ShipmentReconciler, SyncSummary
from .rule_evaluator import RuleEvaluation, evaluate_rule
from .scheduler import SyncScheduler
from .stats import StatsEngine

__all__ = [
    "BaseEngine",
    "evaluate_rule",
    "RuleEvaluation",
    "determine_profile",
    "PayCalculationEngine",
    "PayCalculationResult",
    "PayablesEngine",
    "ProfileAssignmentEngine",
    "DispatchEngine",
    "InvoiceEngine",
    "InvoiceAmounts",
    "calculate_invoice_amounts",
    "ClassificationEngine",
    "LaneDefinition",
    "PromotionResult",
    "ShipmentReconciler",
    "SyncSummary",
    "SyncScheduler",
    "StatsEngine",
]
