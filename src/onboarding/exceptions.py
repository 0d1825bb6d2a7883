"""
Domain-specific exceptions for the onboarding draft engine.

Expected, recoverable failures (load, save, share) are returned to the caller
inside results instead of being raised. The classes still live in one
hierarchy so callers and the API layer can branch on them uniformly.
"""


class OnboardingError(Exception):
    """Base exception for all onboarding errors."""
    pass


class LoadFailure(OnboardingError):
    """The draft document could not be read. The in-memory draft is unchanged."""
    pass


class SaveFailure(OnboardingError):
    """The draft could not be written. The dirty flag stays set."""
    pass


class ValidationFailure(OnboardingError):
    """One or more violations block navigation or submission."""

    def __init__(self, violations: list[str], message: str | None = None):
        self.violations = list(violations)
        super().__init__(message or "; ".join(self.violations) or "Validation failed")


class ShareFailure(OnboardingError):
    """Base for sharing failures."""
    pass


class GrantFailedError(ShareFailure):
    """The access grant itself could not be written."""
    pass


class NotificationFailedError(ShareFailure):
    """The grant was written but the invitation email failed, so it was rolled back."""

    def __init__(self, message: str, rolled_back: bool = True):
        self.rolled_back = rolled_back
        super().__init__(message)


class AccessDenied(OnboardingError):
    """Caller is neither the owner nor a collaborator of the draft."""
    pass


class NotAuthenticatedError(OnboardingError):
    """An operation requires an authenticated user and none is present."""
    pass


class UnsavedChangesError(OnboardingError):
    """Switching drafts would discard unsaved changes."""
    pass


class NavigationInProgressError(OnboardingError):
    """Another navigation prompt is already active."""
    pass
