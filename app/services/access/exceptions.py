"""
Access Service Domain Exceptions
"""


class AccessServiceError(Exception):
    """Base exception for access service errors"""
    pass


class ApplicationNotFoundError(AccessServiceError, ValueError):
    """Raised when an operator acts on a member who never applied"""
    pass
