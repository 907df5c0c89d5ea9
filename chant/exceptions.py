"""Custom exceptions for the tournament engine."""

from fastapi import HTTPException, status


class ChantServiceError(Exception):
    """Base exception for tournament engine errors."""

    def __init__(self, message: str, error_type: str = "chant_service_error"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


class DeliberationNotFoundError(ChantServiceError):
    """Raised when a deliberation is not found."""

    def __init__(self, identifier: str):
        super().__init__(
            f"Deliberation '{identifier}' not found",
            "deliberation_not_found",
        )
        self.identifier = identifier


class CellNotFoundError(ChantServiceError):
    """Raised when a cell is not found."""

    def __init__(self, identifier: str):
        super().__init__(f"Cell '{identifier}' not found", "cell_not_found")
        self.identifier = identifier


class IdeaNotFoundError(ChantServiceError):
    """Raised when an idea is not found."""

    def __init__(self, identifier: str):
        super().__init__(f"Idea '{identifier}' not found", "idea_not_found")
        self.identifier = identifier


class CommentNotFoundError(ChantServiceError):
    """Raised when a comment is not found."""

    def __init__(self, identifier: str):
        super().__init__(f"Comment '{identifier}' not found", "comment_not_found")
        self.identifier = identifier


class InvalidPhaseError(ChantServiceError):
    """Raised when an operation is attempted in the wrong deliberation phase."""

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Deliberation is in {actual} phase, expected {expected}",
            "invalid_phase",
        )
        self.expected = expected
        self.actual = actual


class InvalidStateTransitionError(ChantServiceError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, entity: str, current_status: str, target_status: str):
        super().__init__(
            f"Invalid {entity} transition: '{current_status}' → '{target_status}'",
            "invalid_state_transition",
        )
        self.entity = entity
        self.current_status = current_status
        self.target_status = target_status


class NotACellParticipantError(ChantServiceError):
    """Raised when a user acts on a cell they are not seated in."""

    def __init__(self, user_id: str, cell_id: str):
        super().__init__(
            f"User {user_id} is not a participant of cell {cell_id}",
            "not_a_participant",
        )
        self.user_id = user_id
        self.cell_id = cell_id


class VoteValidationError(ChantServiceError):
    """Raised when a ballot is malformed."""

    def __init__(self, message: str):
        super().__init__(message, "vote_validation_error")


class VotingClosedError(ChantServiceError):
    """Raised when voting is attempted on a cell that is not accepting votes."""

    def __init__(self, message: str = "Cell is not accepting votes"):
        super().__init__(message, "voting_closed")


class RevisionNotFoundError(ChantServiceError):
    """Raised when an idea revision is not found."""

    def __init__(self, identifier: str):
        super().__init__(f"Revision '{identifier}' not found", "revision_not_found")
        self.identifier = identifier


class RevisionError(ChantServiceError):
    """Raised for idea revision workflow violations."""

    def __init__(self, message: str):
        super().__init__(message, "revision_error")


def raise_http_exception(error: ChantServiceError) -> None:
    """Convert ChantServiceError to HTTPException."""
    status_map = {
        "deliberation_not_found": status.HTTP_404_NOT_FOUND,
        "cell_not_found": status.HTTP_404_NOT_FOUND,
        "idea_not_found": status.HTTP_404_NOT_FOUND,
        "comment_not_found": status.HTTP_404_NOT_FOUND,
        "revision_not_found": status.HTTP_404_NOT_FOUND,
        "invalid_phase": status.HTTP_409_CONFLICT,
        "invalid_state_transition": status.HTTP_409_CONFLICT,
        "not_a_participant": status.HTTP_403_FORBIDDEN,
        "vote_validation_error": status.HTTP_400_BAD_REQUEST,
        "voting_closed": status.HTTP_400_BAD_REQUEST,
        "revision_error": status.HTTP_400_BAD_REQUEST,
        "no_champion": status.HTTP_409_CONFLICT,
        "chant_service_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }

    raise HTTPException(
        status_code=status_map.get(error.error_type, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={
            "type": f"about:blank#{error.error_type}",
            "title": error.error_type.replace("_", " ").title(),
            "status": status_map.get(error.error_type, 500),
            "detail": error.message,
        },
    )
