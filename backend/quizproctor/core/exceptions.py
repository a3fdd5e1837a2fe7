"""Error hierarchy shared by the API and the client engine.

Every error carries a stable ``code`` so the HTTP layer can serialize it and
``HttpSessionBackend`` can raise the same class again on the client side.
"""
from typing import Optional


class QuizEngineError(Exception):
    code = "quiz_engine_error"
    status_code = 500

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class SessionNotFound(QuizEngineError):
    """Quiz session not found"""
    code = "session_not_found"
    status_code = 404


class QuizNotFound(QuizEngineError):
    """Quiz not found"""
    code = "quiz_not_found"
    status_code = 404


class QuizNotAvailable(QuizEngineError):
    """Quiz is not available outside its scheduled window"""
    code = "quiz_not_available"
    status_code = 403


class AlreadyActiveSession(QuizEngineError):
    """A session for this quiz already exists"""
    code = "already_active_session"
    status_code = 409


class AttemptsExhausted(QuizEngineError):
    """Maximum quiz attempts exceeded"""
    code = "attempts_exhausted"
    status_code = 403


class StateConflict(QuizEngineError):
    """Operation is not allowed in the current session state"""
    code = "state_conflict"
    status_code = 409


class PermissionDenied(QuizEngineError):
    """Not authorized to access this session"""
    code = "permission_denied"
    status_code = 403


class ProctoringInitError(QuizEngineError):
    """Proctoring environment could not be initialized"""
    code = "proctoring_init_failed"
    status_code = 400


class AutosaveError(QuizEngineError):
    """Answers could not be saved"""
    code = "autosave_failed"
    status_code = 503


class SubmitError(QuizEngineError):
    """Quiz could not be submitted"""
    code = "submit_failed"
    status_code = 503


class BackendUnavailable(QuizEngineError):
    """Session store is unreachable"""
    code = "backend_unavailable"
    status_code = 503


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        SessionNotFound,
        QuizNotFound,
        QuizNotAvailable,
        AlreadyActiveSession,
        AttemptsExhausted,
        StateConflict,
        PermissionDenied,
        ProctoringInitError,
        AutosaveError,
        SubmitError,
        BackendUnavailable,
    )
}


def error_from_detail(detail, status_code: int) -> QuizEngineError:
    """Rebuild a typed error from an API error body."""
    if isinstance(detail, dict):
        cls = ERRORS_BY_CODE.get(detail.get("code"), QuizEngineError)
        error = cls(detail.get("message"))
    else:
        error = QuizEngineError(str(detail) if detail else None)
    if type(error) is QuizEngineError:
        error.status_code = status_code
    return error
