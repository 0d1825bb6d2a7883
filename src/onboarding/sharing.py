"""
Sharing Manager.

Grants, records and revokes collaborator access to the owner's draft. The
grant is the email on the draft's `shared_with` list; invitation records
are an audit trail and never gate access.

`share` is all-or-nothing from the owner's point of view: the grant is
written first, and if the invitation email cannot be sent the grant and its
invitation record are rolled back.
"""

import asyncio
import logging
from dataclasses import dataclass

from onboarding.access import ensure_owner
from onboarding.auth import require_user
from onboarding.config import settings
from onboarding.db.adapter import PersistenceAdapter
from onboarding.exceptions import (
    AccessDenied,
    GrantFailedError,
    NotificationFailedError,
    OnboardingError,
    ShareFailure,
    ValidationFailure,
)
from onboarding.models import Draft, InvitationStatus, ShareInvitation, normalize_email
from onboarding.notifications import NotificationClient
from onboarding.repository import DraftRepository

logger = logging.getLogger(__name__)


@dataclass
class ShareResult:
    """Outcome of share/revoke. `error` is set only when `ok` is False."""
    ok: bool
    email: str
    invitation: ShareInvitation | None = None
    error: OnboardingError | None = None
    already_shared: bool = False


class SharingManager:
    """Collaborator access for the draft held by a DraftRepository."""

    def __init__(
        self,
        repository: DraftRepository,
        notifier: NotificationClient,
        adapter: PersistenceAdapter | None = None,
        invitations_collection: str | None = None,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.adapter = adapter or repository.adapter
        self.invitations_collection = invitations_collection or settings.invitations_collection
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Owner operations
    # -------------------------------------------------------------------------

    async def share(self, recipient_email: str) -> ShareResult:
        """
        Give `recipient_email` read/write access to the owner's draft.

        Sharing with an address already on the list is a no-op that reports
        success without sending another email.

        Raises:
            NotAuthenticatedError: no user on the repository
            AccessDenied: the current draft is not the caller's own
        """
        user = require_user(self.repository.user)
        draft = self.repository.draft
        ensure_owner(user, draft)

        try:
            email = normalize_email(recipient_email)
        except ValueError as e:
            return ShareResult(ok=False, email=recipient_email, error=ValidationFailure([str(e)]))
        if user.email and email == user.email.strip().lower():
            return ShareResult(
                ok=False,
                email=email,
                error=ValidationFailure(["You cannot share a draft with yourself"]),
            )

        async with self._lock:
            current = list(self.repository.draft.shared_with)
            if email in {e.lower() for e in current}:
                logger.info(f"Draft {draft.owner_id} already shared with {email}")
                return ShareResult(ok=True, email=email, already_shared=True)

            # 1. Grant
            if not await self.repository.write_sharing(current + [email]):
                return ShareResult(
                    ok=False,
                    email=email,
                    error=GrantFailedError(f"Could not grant access to {email}"),
                )

            # 2. Audit record
            invitation = ShareInvitation(
                form_owner_id=draft.owner_id,
                recipient_email=email,
                owner_email=draft.owner_email or user.email,
            )
            try:
                await self.adapter.set_document(
                    self.invitations_collection,
                    invitation.id,
                    invitation.to_dict(),
                    merge=False,
                )
            except Exception as e:
                logger.error(f"Failed to record invitation for {email}: {e}")
                await self._revoke_grant(email)
                return ShareResult(
                    ok=False,
                    email=email,
                    error=GrantFailedError(f"Could not record the invitation for {email}"),
                )

            # 3. Notify, rolling back on failure
            sent = await self.notifier.send_share_invitation(
                recipient_email=email,
                owner_email=invitation.owner_email or "",
                form_id=draft.owner_id,
            )
            if not sent:
                logger.warning(f"Invitation email to {email} failed, rolling back grant")
                cleared = await self._delete_invitation(invitation.id)
                revoked = await self._revoke_grant(email)
                rolled_back = cleared and revoked
                return ShareResult(
                    ok=False,
                    email=email,
                    error=NotificationFailedError(
                        f"Could not notify {email}; access was not granted",
                        rolled_back=rolled_back,
                    ),
                )

        logger.info(f"Shared draft {draft.owner_id} with {email}")
        return ShareResult(ok=True, email=email, invitation=invitation)

    async def revoke(self, recipient_email: str) -> ShareResult:
        """Remove a collaborator and delete their invitation records."""
        user = require_user(self.repository.user)
        draft = self.repository.draft
        ensure_owner(user, draft)
        email = (recipient_email or "").strip().lower()

        async with self._lock:
            if not await self._revoke_grant(email):
                return ShareResult(
                    ok=False,
                    email=email,
                    error=ShareFailure(f"Could not revoke access for {email}"),
                )
            for invitation in await self._invitations_for(draft.owner_id, email):
                await self._delete_invitation(invitation.id)

        logger.info(f"Revoked access to draft {draft.owner_id} for {email}")
        return ShareResult(ok=True, email=email)

    async def list_invitations(self) -> list[ShareInvitation]:
        """Invitation records for the owner's draft, oldest first."""
        user = require_user(self.repository.user)
        ensure_owner(user, self.repository.draft)
        invitations = await self._invitations_for(user.id)
        return sorted(invitations, key=lambda inv: inv.created_at)

    # -------------------------------------------------------------------------
    # Recipient operations
    # -------------------------------------------------------------------------

    async def shared_with_me(self) -> list[Draft]:
        """Drafts whose sharing list contains the caller's email."""
        user = require_user(self.repository.user)
        if not user.email:
            return []
        documents = await self.adapter.query_documents(
            self.repository.collection,
            "shared_with",
            "array-contains",
            user.email.strip().lower(),
        )
        drafts = []
        for document in documents:
            doc_id = document.pop("id", None)
            drafts.append(Draft.from_document(document, owner_id=doc_id))
        return drafts

    async def pending_invitations(self) -> list[ShareInvitation]:
        """Invitations addressed to the caller that are still pending."""
        user = require_user(self.repository.user)
        if not user.email:
            return []
        documents = await self.adapter.query_documents(
            self.invitations_collection,
            "recipient_email",
            "==",
            user.email.strip().lower(),
        )
        invitations = [ShareInvitation.from_dict(doc) for doc in documents]
        return [inv for inv in invitations if inv.status == InvitationStatus.PENDING]

    async def respond(self, invitation_id: str, accept: bool) -> ShareInvitation:
        """
        Record the recipient's answer to an invitation.

        Audit only: access already follows the sharing list, so rejecting
        does not remove the grant.
        """
        user = require_user(self.repository.user)
        document = await self.adapter.get_document(self.invitations_collection, invitation_id)
        if document is None:
            raise AccessDenied(f"Invitation {invitation_id} not found")

        invitation = ShareInvitation.from_dict(document)
        if (user.email or "").strip().lower() != invitation.recipient_email:
            raise AccessDenied("This invitation is addressed to someone else")

        invitation.status = InvitationStatus.ACCEPTED if accept else InvitationStatus.REJECTED
        await self.adapter.set_document(
            self.invitations_collection,
            invitation.id,
            {"status": invitation.status.value},
            merge=True,
        )
        logger.info(f"Invitation {invitation.id} {invitation.status.value} by {invitation.recipient_email}")
        return invitation

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _revoke_grant(self, email: str) -> bool:
        remaining = [e for e in self.repository.draft.shared_with if e.lower() != email]
        ok = await self.repository.write_sharing(remaining)
        if not ok:
            logger.error(f"Could not remove {email} from draft {self.repository.draft.owner_id}")
        return ok

    async def _invitations_for(self, owner_id: str, email: str | None = None) -> list[ShareInvitation]:
        documents = await self.adapter.query_documents(
            self.invitations_collection,
            "form_owner_id",
            "==",
            owner_id,
        )
        invitations = [ShareInvitation.from_dict(doc) for doc in documents]
        if email is not None:
            invitations = [inv for inv in invitations if inv.recipient_email == email]
        return invitations

    async def _delete_invitation(self, invitation_id: str) -> bool:
        """
        Remove an invitation record, or at least close it.

        When the delete fails the record is marked rejected instead so it
        no longer shows as pending. Returns False only if both writes fail.
        """
        try:
            await self.adapter.delete_document(self.invitations_collection, invitation_id)
            return True
        except Exception as e:
            logger.error(f"Failed to delete invitation {invitation_id}: {e}")

        try:
            await self.adapter.set_document(
                self.invitations_collection,
                invitation_id,
                {"status": InvitationStatus.REJECTED.value},
                merge=True,
            )
        except Exception as e:
            logger.error(f"Failed to close invitation {invitation_id}: {e}")
            return False
        logger.info(f"Invitation {invitation_id} marked rejected instead of deleted")
        return True
