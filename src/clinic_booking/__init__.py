"""
Clinic booking service: slot availability, holds and appointment confirmation.
"""

__version__ = "1.0.0"
