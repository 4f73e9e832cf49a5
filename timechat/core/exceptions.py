"""Typed failures raised by the chat services.

Services never talk HTTP; the API layer maps these to responses in one place
(see ``timechat.common``), and the websocket handler turns them into ``error``
events for the offending connection.
"""


class ChatServiceError(Exception):
    """Base exception for all chat service errors."""

    code = "error"
    status_code = 500

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class ValidationError(ChatServiceError):
    """Malformed or missing input."""

    code = "validation_error"
    status_code = 400


class AuthenticationError(ChatServiceError):
    """Missing, invalid or expired credentials."""

    code = "not_authenticated"
    status_code = 401


class NotFoundError(ChatServiceError):
    """Referenced room, code or user is absent or inactive."""

    code = "not_found"
    status_code = 404


class ForbiddenError(ChatServiceError):
    """Actor lacks the required role or membership."""

    code = "forbidden"
    status_code = 403


class InvalidOperationError(ChatServiceError):
    """Operation does not apply to this kind of room."""

    code = "invalid_operation"
    status_code = 400


class ConflictError(ChatServiceError):
    """Request conflicts with the current membership state."""

    code = "conflict"
    status_code = 409


class AlreadyMemberError(ConflictError):
    """User is already a member of this chat."""

    code = "already_member"


class RoomFullError(ConflictError):
    """Chat has reached its maximum member limit."""

    code = "room_full"


class ExpiredError(ChatServiceError):
    """Code or room is past its lifetime or usage limit."""

    code = "expired"
    status_code = 410


class CodeSpaceExhaustedError(ChatServiceError):
    """Could not find a free invite code within the retry limit."""

    code = "code_space_exhausted"
    status_code = 500


class UpstreamFailureError(ChatServiceError):
    """Storage or transport failure."""

    code = "upstream_failure"
    status_code = 502
