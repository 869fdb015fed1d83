"""Error types raised by the attendance core."""


class RollcallError(Exception):
    """Base error carrying a machine code and an HTTP status."""

    code = 'rollcall_error'
    status_code = 500

    def __init__(self, message: str = None, **details):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        self.details = details


class InvalidConfig(RollcallError):
    """Invalid session configuration."""
    code = 'invalid_config'
    status_code = 400


class ValidationError(RollcallError):
    """Malformed request."""
    code = 'validation_error'
    status_code = 400


class SessionNotFound(RollcallError):
    """Session not found."""
    code = 'session_not_found'
    status_code = 404


class SessionNotActive(RollcallError):
    """Session is not active."""
    code = 'session_not_active'
    status_code = 409


class SessionEnded(SessionNotActive):
    """Session has ended."""
    code = 'session_ended'
    status_code = 409


class UnknownToken(RollcallError):
    """Token was not issued by any known session."""
    code = 'unknown_token'
    status_code = 400


class RecordNotFound(RollcallError):
    """Attendance record not found."""
    code = 'record_not_found'
    status_code = 404


class AlreadyDecided(RollcallError):
    """Attendance record was already decided."""
    code = 'already_decided'
    status_code = 409


class DuplicateRecord(RollcallError):
    """A non-rejected record already exists for this participant."""
    code = 'duplicate_record'
    status_code = 409


class StorageUnavailable(RollcallError):
    """Ledger backend is unavailable."""
    code = 'storage_unavailable'
    status_code = 503


class ExportFailed(RollcallError):
    """Export of attendance records failed."""
    code = 'export_failed'
    status_code = 500
