"""
Freight settlement and classification core.

Decides what drivers and carriers are owed for a load, what the customer
owes, and which contract lane prices it.
"""

__version__ = "0.1.0"
