"""
API Relay - admission-controlled forwarding gateway.
"""

__version__ = "0.1.0"
