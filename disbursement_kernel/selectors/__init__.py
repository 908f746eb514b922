"""Read-only query selectors."""

from disbursement_kernel.selectors.request_selector import (
    DashboardStats,
    Pagination,
    RequestFilters,
    RequestPage,
    RequestSelector,
    SortField,
    SortOrder,
)

__all__ = [
    "DashboardStats",
    "Pagination",
    "RequestFilters",
    "RequestPage",
    "RequestSelector",
    "SortField",
    "SortOrder",
]
