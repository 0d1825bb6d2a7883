"""
Onboarding API Endpoints.

Thin HTTP layer over the draft engine. Each authenticated user gets one
OnboardingSession (repository, sharing manager, step registry, navigator)
kept in process, so debounced saves keep running between requests.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from .auth import AuthenticatedUser, get_current_user
from .db.client import get_adapter
from .exceptions import (
    AccessDenied,
    GrantFailedError,
    LoadFailure,
    NotAuthenticatedError,
    NotificationFailedError,
    OnboardingError,
    SaveFailure,
    ShareFailure,
    UnsavedChangesError,
    ValidationFailure,
)
from .models import WizardStep
from .notifications import get_notification_client
from .repository import DraftRepository
from .sections import validate_step
from .sharing import ShareResult, SharingManager
from .steps import PromptChoice, StepRegistry, WizardNavigator
from .storage import get_blob_store
from .submission import submit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["onboarding"])


# =============================================================================
# Sessions
# =============================================================================

@dataclass
class OnboardingSession:
    repository: DraftRepository
    sharing: SharingManager
    registry: StepRegistry
    navigator: WizardNavigator


# In-memory sessions (keyed by user_id)
sessions: dict[str, OnboardingSession] = {}


def build_session(user: AuthenticatedUser) -> OnboardingSession:
    """Wire a session against the configured backends."""
    notifier = get_notification_client()
    repository = DraftRepository(
        get_adapter(),
        user,
        blob_store=get_blob_store(),
        notifier=notifier,
    )
    registry = StepRegistry()
    return OnboardingSession(
        repository=repository,
        sharing=SharingManager(repository, notifier),
        registry=registry,
        navigator=WizardNavigator(repository, registry),
    )


def get_session_factory() -> Callable[[AuthenticatedUser], OnboardingSession]:
    return build_session


async def get_session(
    user: AuthenticatedUser = Depends(get_current_user),
    factory: Callable[[AuthenticatedUser], OnboardingSession] = Depends(get_session_factory),
) -> OnboardingSession:
    """Get the caller's session, loading their own draft on first use."""
    session = sessions.get(user.id)
    if session is None:
        session = factory(user)
        if not await session.repository.load():
            raise _http_error(session.repository.last_error or LoadFailure("Could not load draft"))
        session.navigator.current_step = session.repository.draft.current_step
        sessions[user.id] = session
    return session


_STATUS_CODES: list[tuple[type[OnboardingError], int]] = [
    (NotAuthenticatedError, 401),
    (AccessDenied, 403),
    (UnsavedChangesError, 409),
    (ValidationFailure, 422),
    (NotificationFailedError, 502),
    (GrantFailedError, 503),
    (ShareFailure, 503),
    (SaveFailure, 503),
    (LoadFailure, 503),
]


def _http_error(error: OnboardingError) -> HTTPException:
    status = next((code for cls, code in _STATUS_CODES if isinstance(error, cls)), 500)
    if isinstance(error, ValidationFailure):
        return HTTPException(status_code=status, detail={"violations": error.violations})
    return HTTPException(status_code=status, detail=str(error))


# =============================================================================
# Request/Response Models
# =============================================================================

class FieldsUpdateRequest(BaseModel):
    fields: dict[str, Any] = Field(default_factory=dict)


class SaveRequest(BaseModel):
    notify_collaborators: bool = False


class SwitchRequest(BaseModel):
    target_id: str
    discard_changes: bool = False


class LocationCountRequest(BaseModel):
    count: int = Field(ge=1, le=50)


class NameRequest(BaseModel):
    name: str


class GroupCreateRequest(BaseModel):
    name: str | None = None


class MenuModeRequest(BaseModel):
    same_menu_for_all: bool


class AssignRequest(BaseModel):
    location_name: str


class NavigateRequest(BaseModel):
    target: WizardStep
    on_unsaved: Literal["save", "discard", "cancel"] = "save"


class UploadRequest(BaseModel):
    """File upload as base64 JSON; `field` optionally receives the URL."""
    path: str
    filename: str
    content_base64: str
    content_type: str = "application/octet-stream"
    field: str | None = None


class ShareRequest(BaseModel):
    email: str


class RespondRequest(BaseModel):
    accept: bool


class DraftResponse(BaseModel):
    owner_id: str
    document: dict[str, Any]
    dirty: bool
    saving: bool
    is_shared: bool
    current_step: str
    partition_ok: bool
    violations: list[str]
    last_error: str | None = None


class NavigationResponse(BaseModel):
    allowed: bool
    reason: str
    current_step: str
    violations: list[str] = Field(default_factory=list)
    error: str | None = None


class ShareResponse(BaseModel):
    ok: bool
    email: str
    already_shared: bool = False
    invitation_id: str | None = None


def _draft_response(session: OnboardingSession) -> DraftResponse:
    repository = session.repository
    draft = repository.draft
    return DraftResponse(
        owner_id=draft.owner_id,
        document=draft.to_document(),
        dirty=repository.dirty,
        saving=repository.saving,
        is_shared=repository.is_shared,
        current_step=session.navigator.current_step.value,
        partition_ok=repository.partition.ok,
        violations=list(repository.partition.violations),
        last_error=str(repository.last_error) if repository.last_error else None,
    )


def _share_response(result: ShareResult) -> ShareResponse:
    if not result.ok and result.error is not None:
        raise _http_error(result.error)
    return ShareResponse(
        ok=result.ok,
        email=result.email,
        already_shared=result.already_shared,
        invitation_id=result.invitation.id if result.invitation else None,
    )


def _structural(session: OnboardingSession, action: Callable[[], Any]) -> DraftResponse:
    try:
        action()
    except (ValueError, IndexError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _draft_response(session)


# =============================================================================
# Draft
# =============================================================================

@router.get("/draft", response_model=DraftResponse)
async def get_draft(session: OnboardingSession = Depends(get_session)) -> DraftResponse:
    return _draft_response(session)


@router.patch("/draft", response_model=DraftResponse)
async def update_draft(
    request: FieldsUpdateRequest,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    """Merge field values; persistence follows on the debounce timer."""
    return _structural(session, lambda: session.repository.update_fields(request.fields))


@router.post("/draft/save", response_model=DraftResponse)
async def save_draft(
    request: SaveRequest | None = None,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    notify = request.notify_collaborators if request else False
    await session.repository.wait_idle()
    if not await session.repository.save(notify_collaborators=notify):
        raise _http_error(session.repository.last_error or SaveFailure("Save failed"))
    return _draft_response(session)


@router.post("/draft/discard", response_model=DraftResponse)
async def discard_draft(session: OnboardingSession = Depends(get_session)) -> DraftResponse:
    if not await session.repository.discard_changes():
        raise _http_error(session.repository.last_error or LoadFailure("Reload failed"))
    session.navigator.current_step = session.repository.draft.current_step
    return _draft_response(session)


@router.post("/draft/refresh", response_model=DraftResponse)
async def refresh_draft(session: OnboardingSession = Depends(get_session)) -> DraftResponse:
    """Pick up collaborators' edits unless local edits are unsaved."""
    await session.repository.refresh()
    return _draft_response(session)


@router.post("/draft/switch", response_model=DraftResponse)
async def switch_draft(
    request: SwitchRequest,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    try:
        loaded = await session.repository.switch_to(request.target_id, request.discard_changes)
    except OnboardingError as e:
        raise _http_error(e)
    if not loaded:
        raise _http_error(session.repository.last_error or LoadFailure("Load failed"))
    session.navigator.current_step = session.repository.draft.current_step
    return _draft_response(session)


# =============================================================================
# Locations & Groups
# =============================================================================

@router.put("/locations/count", response_model=DraftResponse)
async def set_location_count(
    request: LocationCountRequest,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    return _structural(session, lambda: session.repository.set_location_count(request.count))


@router.put("/locations/{index}", response_model=DraftResponse)
async def rename_location(
    index: int,
    request: NameRequest,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    return _structural(session, lambda: session.repository.rename_location(index, request.name))


@router.post("/locations/{index}/confirm", response_model=DraftResponse)
async def confirm_location(index: int, session: OnboardingSession = Depends(get_session)) -> DraftResponse:
    return _structural(session, lambda: session.repository.confirm_location(index))


@router.put("/menu-mode", response_model=DraftResponse)
async def set_menu_mode(
    request: MenuModeRequest,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    return _structural(
        session,
        lambda: session.repository.set_same_menu_for_all(request.same_menu_for_all),
    )


@router.post("/groups", response_model=DraftResponse)
async def add_group(
    request: GroupCreateRequest,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    return _structural(session, lambda: session.repository.add_group(request.name))


@router.put("/groups/{group_id}", response_model=DraftResponse)
async def rename_group(
    group_id: str,
    request: NameRequest,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    return _structural(session, lambda: session.repository.rename_group(group_id, request.name))


@router.post("/groups/{group_id}/confirm", response_model=DraftResponse)
async def confirm_group(group_id: str, session: OnboardingSession = Depends(get_session)) -> DraftResponse:
    return _structural(session, lambda: session.repository.confirm_group(group_id))


@router.delete("/groups/{group_id}", response_model=DraftResponse)
async def remove_group(group_id: str, session: OnboardingSession = Depends(get_session)) -> DraftResponse:
    return _structural(session, lambda: session.repository.remove_group(group_id))


@router.post("/groups/{group_id}/locations", response_model=DraftResponse)
async def assign_location(
    group_id: str,
    request: AssignRequest,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    return _structural(
        session,
        lambda: session.repository.assign_location_to_group(group_id, request.location_name),
    )


@router.delete("/groups/{group_id}/locations/{location_name}", response_model=DraftResponse)
async def unassign_location(
    group_id: str,
    location_name: str,
    session: OnboardingSession = Depends(get_session),
) -> DraftResponse:
    return _structural(
        session,
        lambda: session.repository.unassign_location(group_id, location_name),
    )


# =============================================================================
# Steps
# =============================================================================

@router.get("/steps/{step}/validate")
async def validate_step_endpoint(
    step: WizardStep,
    session: OnboardingSession = Depends(get_session),
) -> dict:
    ok, violations = validate_step(step, session.repository.draft, session.repository.min_groups)
    return {"step": step.value, "ok": ok, "violations": violations}


@router.post("/steps/navigate", response_model=NavigationResponse)
async def navigate(
    request: NavigateRequest,
    session: OnboardingSession = Depends(get_session),
) -> NavigationResponse:
    """Leave the current step; `on_unsaved` answers the save/discard prompt."""

    async def prompt(from_step: WizardStep, to_step: WizardStep | None) -> PromptChoice:
        return PromptChoice(request.on_unsaved)

    outcome = await session.navigator.request_navigation(request.target, prompt)
    return NavigationResponse(
        allowed=outcome.allowed,
        reason=outcome.reason,
        current_step=session.navigator.current_step.value,
        violations=outcome.violations,
        error=str(outcome.error) if outcome.error else None,
    )


# =============================================================================
# Files
# =============================================================================

@router.post("/files")
async def upload_file(
    request: UploadRequest,
    session: OnboardingSession = Depends(get_session),
) -> dict:
    try:
        content = base64.b64decode(request.content_base64, validate=True)
    except ValueError:
        raise HTTPException(status_code=400, detail="content_base64 is not valid base64")

    try:
        url = await session.repository.upload_file(
            request.path,
            request.filename,
            content,
            request.content_type,
        )
    except OnboardingError as e:
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Upload of {request.filename} failed: {e}")
        raise HTTPException(status_code=502, detail="File upload failed")

    if request.field:
        _structural(session, lambda: session.repository.update_field(request.field, url))
    return {"url": url, "field": request.field}


# =============================================================================
# Sharing
# =============================================================================

@router.post("/share", response_model=ShareResponse)
async def share_draft(
    request: ShareRequest,
    session: OnboardingSession = Depends(get_session),
) -> ShareResponse:
    try:
        result = await session.sharing.share(request.email)
    except OnboardingError as e:
        raise _http_error(e)
    return _share_response(result)


@router.delete("/share/{email}", response_model=ShareResponse)
async def revoke_share(email: str, session: OnboardingSession = Depends(get_session)) -> ShareResponse:
    try:
        result = await session.sharing.revoke(email)
    except OnboardingError as e:
        raise _http_error(e)
    return _share_response(result)


@router.get("/share")
async def list_shares(session: OnboardingSession = Depends(get_session)) -> dict:
    try:
        invitations = await session.sharing.list_invitations()
    except OnboardingError as e:
        raise _http_error(e)
    return {
        "shared_with": list(session.repository.draft.shared_with),
        "invitations": [inv.to_dict() for inv in invitations],
    }


@router.get("/shared-with-me")
async def shared_with_me(session: OnboardingSession = Depends(get_session)) -> list[dict]:
    drafts = await session.sharing.shared_with_me()
    return [
        {
            "owner_id": d.owner_id,
            "owner_email": d.owner_email,
            "current_step": d.current_step.value,
            "last_updated": d.last_updated,
        }
        for d in drafts
    ]


@router.get("/invitations")
async def pending_invitations(session: OnboardingSession = Depends(get_session)) -> list[dict]:
    return [inv.to_dict() for inv in await session.sharing.pending_invitations()]


@router.post("/invitations/{invitation_id}/respond")
async def respond_to_invitation(
    invitation_id: str,
    request: RespondRequest,
    session: OnboardingSession = Depends(get_session),
) -> dict:
    try:
        invitation = await session.sharing.respond(invitation_id, request.accept)
    except OnboardingError as e:
        raise _http_error(e)
    return invitation.to_dict()


# =============================================================================
# Submission & Session
# =============================================================================

@router.post("/submit")
async def submit_draft(session: OnboardingSession = Depends(get_session)) -> dict:
    result = await submit(session.repository)
    if result.violations_by_step:
        raise HTTPException(status_code=422, detail={"violations_by_step": result.violations_by_step})
    if not result.ok:
        raise _http_error(result.error or SaveFailure("Submission failed"))
    session.navigator.current_step = WizardStep.COMPLETE
    return {"ok": True, "owner_id": session.repository.draft.owner_id}


@router.delete("/session")
async def close_session(user: AuthenticatedUser = Depends(get_current_user)) -> dict:
    """Flush pending edits and forget the caller's session."""
    session = sessions.pop(user.id, None)
    if session is None:
        return {"closed": False, "saved": True}
    saved = await session.repository.close()
    if not saved:
        logger.warning(f"Session for {user.id} closed with unsaved changes")
    return {"closed": True, "saved": saved}
