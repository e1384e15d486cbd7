"""Plan records and their JSON-file store."""

from .schema import ChecklistItem, ChecklistQueue, CreationStep, LanguageInfo, Plan, Point
from .store import PlanStore

__all__ = ["ChecklistItem", "ChecklistQueue", "CreationStep", "LanguageInfo", "Plan", "PlanStore", "Point"]
