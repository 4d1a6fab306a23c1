"""
Parties module.

Customers and vendors the organization transacts with.  Plain CRUD plus
Active/Inactive status flips over the kernel repository contract.
"""

from erp_modules.parties.models import Party, PartyType
from erp_modules.parties.service import PartyService

__all__ = ["Party", "PartyService", "PartyType"]
