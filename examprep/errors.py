from __future__ import annotations

PROVIDER_AUTH_MARKERS = (
    "security token",
    "unrecognizedclientexception",
    "access key",
    "credentials",
    "invalid api key",
    "unauthorized",
    "subscription key",
)

PROVIDER_AUTH_MESSAGE = (
    "Question generation provider authentication failed. Check LLM credentials."
)


class ExamPrepError(Exception):
    """Base class for errors raised by the exam-prep core."""


class GenerationError(ExamPrepError):
    """No question could be generated for a request."""


class ProviderAuthError(GenerationError):
    """The LLM provider rejected our credentials; retrying will not help."""


class PaperExtractionError(ExamPrepError):
    pass


class HintLimitError(ExamPrepError):
    pass


class NotFoundError(ExamPrepError):
    pass


def is_provider_auth_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in PROVIDER_AUTH_MARKERS)


def classify_provider_error(exc: BaseException) -> ExamPrepError:
    """
    Maps an arbitrary failure into the error taxonomy surfaced to callers.
    Credential problems get their own category because they need operator action.
    """
    if isinstance(exc, ProviderAuthError):
        return exc
    if is_provider_auth_error(exc):
        return ProviderAuthError(PROVIDER_AUTH_MESSAGE)
    if isinstance(exc, ExamPrepError):
        return exc
    return GenerationError(str(exc) or exc.__class__.__name__)
