"""
Permit Sniper - time-triggered wilderness permit acquisition.
"""

__version__ = "1.0.0"
