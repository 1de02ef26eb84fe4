"""
Custom Error Classes for Better Error Handling
"""


class FormdeskError(Exception):
    """Base exception for the forms security service"""

    pass


class ValidationError(FormdeskError):
    """Raised when caller input is rejected before touching the store"""

    pass


class ConfigurationError(FormdeskError):
    """Raised when the service is started with unsafe or missing settings"""

    pass
