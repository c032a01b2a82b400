"""Ledger record and cache models."""

from kablan.models.cache import CacheEntry
from kablan.models.entities import (
    ActivityLog,
    Category,
    CustomLimits,
    EntityType,
    Expense,
    ExpenseType,
    Income,
    Milestone,
    MilestoneStatus,
    Organization,
    OrganizationSettings,
    PaymentMethod,
    PaymentStatus,
    Project,
    ProjectSupplier,
    Subcategory,
    Supplier,
    SystemSettings,
    User,
    UserPermissions,
    UserRole,
)

__all__ = [
    "ActivityLog",
    "CacheEntry",
    "Category",
    "CustomLimits",
    "EntityType",
    "Expense",
    "ExpenseType",
    "Income",
    "Milestone",
    "MilestoneStatus",
    "Organization",
    "OrganizationSettings",
    "PaymentMethod",
    "PaymentStatus",
    "Project",
    "ProjectSupplier",
    "Subcategory",
    "Supplier",
    "SystemSettings",
    "User",
    "UserPermissions",
    "UserRole",
]
