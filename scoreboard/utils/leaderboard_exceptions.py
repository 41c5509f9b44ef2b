"""
Custom exceptions for the scoreboard engine with user-friendly error messages.

Every exception carries the HTTP status and a short machine-readable code so
the API layer can map failures without knowing the individual types.
"""

class ScoreboardException(Exception):
    """Base exception for scoreboard-related errors."""
    status_code = 500
    error_code = "error"

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class InvalidInputError(ScoreboardException):
    """Raised when a request is malformed, out of range or carries a bad credential."""
    status_code = 400
    error_code = "invalid_input"

    def __init__(self, field: str, reason: str):
        self.field = field
        super().__init__(
            f"Invalid {field}: {reason}",
            f"Invalid input: {reason}"
        )

class PlayerNotFoundError(ScoreboardException):
    """Raised when a positional query names a player with no entry."""
    status_code = 404
    error_code = "not_found"

    def __init__(self, player_id: str):
        self.player_id = player_id
        super().__init__(
            f"Player '{player_id}' not found",
            "Player not found on the leaderboard."
        )

class ArchiveNotFoundError(ScoreboardException):
    """Raised when no archive snapshot exists for an epoch."""
    status_code = 404
    error_code = "archive_not_found"

    def __init__(self, epoch: int = None):
        self.epoch = epoch
        if epoch is None:
            message = "No archive snapshot exists yet"
        else:
            message = f"No archive snapshot for epoch {epoch}"
        super().__init__(message, "Archive not found.")

class NotEligibleError(ScoreboardException):
    """Raised when a player is not eligible for this epoch's reward."""
    status_code = 400
    error_code = "not_eligible"

    def __init__(self, player_id: str, epoch: int):
        self.player_id = player_id
        self.epoch = epoch
        super().__init__(
            f"Player '{player_id}' is not eligible for the epoch {epoch} reward",
            "You are not eligible for a reward this epoch."
        )

class AlreadyClaimedError(ScoreboardException):
    """Raised when a player has already claimed the reward for the current epoch."""
    status_code = 400
    error_code = "already_claimed"

    def __init__(self, player_id: str, epoch: int):
        self.player_id = player_id
        self.epoch = epoch
        super().__init__(
            f"Player '{player_id}' already claimed the epoch {epoch} reward",
            "Reward already claimed for this epoch."
        )

class EpochChangedError(ScoreboardException):
    """Raised when the epoch moves on between a claim's eligibility check and its write."""
    status_code = 409
    error_code = "epoch_changed"

    def __init__(self, player_id: str, expected_epoch: int, current_epoch: int):
        self.player_id = player_id
        self.expected_epoch = expected_epoch
        self.current_epoch = current_epoch
        super().__init__(
            f"Claim by '{player_id}' checked against epoch {expected_epoch} but epoch is now {current_epoch}",
            "The reward period just changed. Please try again."
        )

class UnauthorizedError(ScoreboardException):
    """Raised when an administrative credential is missing or wrong."""
    status_code = 403
    error_code = "unauthorized"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"Unauthorized {operation} request",
            "Unauthorized."
        )

class StorageError(ScoreboardException):
    """Raised when database operations fail."""
    status_code = 500
    error_code = "storage_error"

    def __init__(self, operation: str, details: str = None):
        self.operation = operation
        super().__init__(
            f"Database error during {operation}: {details}",
            "Database error occurred. Please try again later."
        )

class ResetError(StorageError):
    """Raised when a reset fails part way; the stage tells the operator where to look."""
    error_code = "reset_failed"

    def __init__(self, stage: str, details: str = None):
        self.stage = stage
        super().__init__(f"reset ({stage})", details)
        self.user_message = f"Reset failed during {stage}. Check archive integrity before retrying."
