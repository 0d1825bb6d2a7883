"""
Final submission.

Validates every step up to review, marks the draft complete and files a
submission record for admin review.
"""

import logging
from dataclasses import dataclass, field

from .auth import require_user
from .config import settings
from .exceptions import OnboardingError, SaveFailure
from .models import STEP_ORDER, WizardStep, utc_now_iso
from .repository import DraftRepository
from .sections import validate_step

logger = logging.getLogger(__name__)

SUBMITTED_STEPS = STEP_ORDER[:STEP_ORDER.index(WizardStep.REVIEW) + 1]


@dataclass
class SubmissionResult:
    ok: bool
    violations_by_step: dict[str, list[str]] = field(default_factory=dict)
    error: OnboardingError | None = None


def collect_violations(repository: DraftRepository) -> dict[str, list[str]]:
    """Violations of every submitted step, keyed by step name (only failing steps)."""
    draft = repository.draft
    result = {}
    for step in SUBMITTED_STEPS:
        ok, violations = validate_step(step, draft, repository.min_groups)
        if not ok:
            result[step.value] = violations
    return result


async def submit(
    repository: DraftRepository,
    submissions_collection: str | None = None,
) -> SubmissionResult:
    """
    Submit the current draft.

    Nothing is written unless every step validates. The draft is saved
    (as complete) before the submission record so a failed record write
    can simply be retried.
    """
    user = require_user(repository.user)
    collection = submissions_collection or settings.submissions_collection

    violations = collect_violations(repository)
    if violations:
        logger.info(f"Submission of {repository.draft.owner_id} blocked in {len(violations)} step(s)")
        return SubmissionResult(ok=False, violations_by_step=violations)

    repository.set_progress(WizardStep.COMPLETE, is_complete=True)
    if not await repository.flush():
        return SubmissionResult(
            ok=False,
            error=repository.last_error or SaveFailure("Could not save the draft"),
        )

    draft = repository.draft
    now = utc_now_iso()
    try:
        existing = await repository.adapter.get_document(collection, draft.owner_id)
        record = {
            "user_id": draft.owner_id,
            "user_email": draft.owner_email,
            "submitted_by": user.email or user.id,
            "created_at": (existing or {}).get("created_at") or now,
            "updated_at": now,
            "data": draft.to_document(),
        }
        await repository.adapter.set_document(collection, draft.owner_id, record, merge=False)
    except Exception as e:
        logger.error(f"Failed to file submission for {draft.owner_id}: {e}")
        return SubmissionResult(ok=False, error=SaveFailure(f"Could not file the submission: {e}"))

    logger.info(f"Draft {draft.owner_id} submitted by {user.id}")
    await repository.notify_collaborators()
    return SubmissionResult(ok=True)
