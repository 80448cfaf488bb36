"""Core reconciliation engine.

This package contains the attribute merge engine, the address resolution
strategy, the two-stage record locator, the record reconciler itself and the
declaration-file loader.
"""

from .addressing import AddressResolver, build_search_predicate, select_mode
from .declarations import DeclarationLoader
from .ea_merge import AttributeMerger, merge_ext_attrs
from .locator import RecordLocator, search_by_alt_id
from .planner import ChangePlanner
from .reconciler import RecordReconciler

__all__ = [
    "AddressResolver",
    "AttributeMerger",
    "ChangePlanner",
    "DeclarationLoader",
    "RecordLocator",
    "RecordReconciler",
    "build_search_predicate",
    "merge_ext_attrs",
    "search_by_alt_id",
    "select_mode",
]
