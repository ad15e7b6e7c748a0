from . import (
    auth,
    daily_entries,
    products,
    reports,
    users,
)

__all__ = [
    "auth",
    "daily_entries",
    "products",
    "reports",
    "users",
]
