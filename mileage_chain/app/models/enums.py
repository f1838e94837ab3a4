"""
User roles enumeration.

Roles are carried in the bearer token; there is no user table here.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: System-level access, may run repairs for any tenant it is scoped to
        FLEET_OWNER: Owns vehicles and their trip chains
        DRIVER: Records trips for a fleet owner's vehicles
    """
    ADMIN = "ADMIN"
    FLEET_OWNER = "FLEET_OWNER"
    DRIVER = "DRIVER"
