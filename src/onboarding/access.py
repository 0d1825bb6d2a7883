"""
Draft access rules.

The owner can do anything with their draft. A collaborator (an email on the
draft's `shared_with` list) can read and write fields but cannot change who
the draft is shared with. Everyone else is refused.
"""

from onboarding.auth import AuthenticatedUser
from onboarding.exceptions import AccessDenied
from onboarding.models import Draft


def is_owner(user: AuthenticatedUser, draft: Draft) -> bool:
    return user.id == draft.owner_id


def can_access(user: AuthenticatedUser, draft: Draft) -> bool:
    """Owner or listed collaborator."""
    return is_owner(user, draft) or draft.has_collaborator(user.email)


def ensure_access(user: AuthenticatedUser, draft: Draft) -> None:
    if not can_access(user, draft):
        raise AccessDenied(f"User {user.id} has no access to draft {draft.owner_id}")


def ensure_owner(user: AuthenticatedUser, draft: Draft) -> None:
    if not is_owner(user, draft):
        raise AccessDenied(f"Only the owner can manage sharing for draft {draft.owner_id}")
