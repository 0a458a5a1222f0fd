"""
Invite Service Domain Exceptions
"""


class InviteServiceError(Exception):
    """Base exception for invite service errors"""
    pass


class InviteCreationError(InviteServiceError):
    """Raised when a personal invite could not be created or persisted"""
    pass


class InvalidMemberIdError(ValueError):
    """Raised when a member id given by an operator is empty or malformed"""
    pass
