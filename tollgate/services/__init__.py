"""
Background services.

Services run outside request handling.
"""

from tollgate.services.housekeeping import Housekeeper, HousekeepingReport

__all__ = [
    "Housekeeper",
    "HousekeepingReport",
]
