"""
Period Service Domain Exceptions
"""


class InvalidPeriodError(ValueError):
    """Raised when a period key is not a valid YYYY-MM month"""
    pass
