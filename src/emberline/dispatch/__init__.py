"""Dispatch — zone priority, energy budgets, route assignment."""
from emberline.dispatch.assigner import (
    Assignment,
    AssignmentResult,
    AssignmentStatus,
    BacklogEntry,
    RouteAssigner,
)
from emberline.dispatch.energy import EnergyBudgetModel, MissionEstimate, trip_count
from emberline.dispatch.priority import PriorityScheduler, RankedZone, priority_score

__all__ = [
    "Assignment",
    "AssignmentResult",
    "AssignmentStatus",
    "BacklogEntry",
    "EnergyBudgetModel",
    "MissionEstimate",
    "PriorityScheduler",
    "RankedZone",
    "RouteAssigner",
    "priority_score",
    "trip_count",
]
