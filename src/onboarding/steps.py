"""
Step Controller Contract.

Each mounted wizard step registers a validate/save pair with a StepRegistry
that the wizard shell owns and passes down. Before leaving a step the shell
asks the WizardNavigator, which:

1. validates the step and blocks on violations,
2. waits for any in-flight save to settle (saves are never aborted),
3. if anything is unsaved, asks the user to save or discard (one prompt at
   a time: IDLE -> PROMPTING -> SAVING | DISCARDING -> IDLE),
4. moves to the target step.

StepSession is the page-local copy of a step's fields. It syncs with the
repository only through explicit `pull()` and `push()` calls.
"""

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator

from .exceptions import (
    LoadFailure,
    NavigationInProgressError,
    OnboardingError,
    SaveFailure,
    ValidationFailure,
)
from .models import WizardStep, next_step, previous_step
from .repository import DraftRepository
from .sections import STEP_FIELDS, validate_step

logger = logging.getLogger(__name__)


ValidateFn = Callable[[], "bool | tuple[bool, list[str]]"]
SaveFn = Callable[[], Awaitable[bool]]


def normalize_validation(result: Any) -> tuple[bool, list[str]]:
    """Accept either a bare bool or an (ok, violations) pair."""
    if isinstance(result, tuple):
        ok, violations = result
        return bool(ok), list(violations)
    return bool(result), []


@dataclass
class StepHandlers:
    """What a mounted step exposes to the wizard shell."""
    validate: ValidateFn
    save: SaveFn
    has_changes: Callable[[], bool] | None = None
    discard: Callable[[], None] | None = None


class StepRegistry:
    """Handlers of the currently mounted steps."""

    def __init__(self) -> None:
        self._handlers: dict[WizardStep, StepHandlers] = {}

    def register(self, step: WizardStep, handlers: StepHandlers) -> None:
        self._handlers[step] = handlers
        logger.debug(f"Step {step.value} mounted")

    def unregister(self, step: WizardStep, handlers: StepHandlers | None = None) -> None:
        """Remove a step's handlers; with `handlers`, only if they are still the registered ones."""
        current = self._handlers.get(step)
        if current is None:
            return
        if handlers is not None and current is not handlers:
            return
        del self._handlers[step]
        logger.debug(f"Step {step.value} unmounted")

    def get(self, step: WizardStep) -> StepHandlers | None:
        return self._handlers.get(step)

    def __contains__(self, step: WizardStep) -> bool:
        return step in self._handlers

    @contextmanager
    def mounted(self, step: WizardStep, handlers: StepHandlers) -> Iterator[StepHandlers]:
        """Register for the duration of a `with` block."""
        self.register(step, handlers)
        try:
            yield handlers
        finally:
            self.unregister(step, handlers)


class StepSession:
    """Page-local copy of one step's draft fields."""

    def __init__(
        self,
        step: WizardStep,
        repository: DraftRepository,
        fields: tuple[str, ...] | None = None,
    ) -> None:
        self.step = step
        self.repository = repository
        self.field_names = tuple(fields if fields is not None else STEP_FIELDS[step])
        self.values: dict[str, Any] = {}
        self._baseline: dict[str, Any] = {}
        self.pull()

    def pull(self) -> None:
        """Replace local values with the repository's."""
        self.values = {name: copy.deepcopy(self.repository.get(name)) for name in self.field_names}
        self._baseline = copy.deepcopy(self.values)

    def set(self, name: str, value: Any) -> None:
        if name not in self.field_names:
            raise KeyError(f"Step {self.step.value} has no field '{name}'")
        self.values[name] = value

    def changes(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in self.values.items()
            if value != self._baseline.get(name)
        }

    def has_changes(self) -> bool:
        return bool(self.changes())

    def push(self) -> bool:
        """Hand local edits to the repository. Returns True when anything changed."""
        changed = self.changes()
        if not changed:
            return False
        self.repository.update_fields(copy.deepcopy(changed))
        self._baseline = copy.deepcopy(self.values)
        return True

    def discard(self) -> None:
        self.values = copy.deepcopy(self._baseline)

    def validate(self) -> tuple[bool, list[str]]:
        """Validate the local values as they would land in the draft."""
        draft = self.repository.draft.with_values(self.changes())
        return validate_step(self.step, draft, self.repository.min_groups)

    async def save(self) -> bool:
        self.push()
        return await self.repository.save()

    def handlers(self) -> StepHandlers:
        return StepHandlers(
            validate=self.validate,
            save=self.save,
            has_changes=self.has_changes,
            discard=self.discard,
        )

    def mount(self, registry: StepRegistry):
        """Context manager registering this session's handlers."""
        return registry.mounted(self.step, self.handlers())


# =============================================================================
# Navigation
# =============================================================================

class NavigationState(Enum):
    IDLE = "idle"
    PROMPTING = "prompting"
    SAVING = "saving"
    DISCARDING = "discarding"


class PromptChoice(Enum):
    SAVE = "save"
    DISCARD = "discard"
    CANCEL = "cancel"


# Asked when leaving a step with unsaved changes: (from_step, to_step or None on close)
Prompt = Callable[[WizardStep, "WizardStep | None"], Awaitable[PromptChoice]]


@dataclass
class NavigationOutcome:
    """Result of a navigation request. `reason` is one of ok, invalid, cancelled, save_failed, discard_failed, busy."""
    allowed: bool
    target: WizardStep | None = None
    reason: str = "ok"
    violations: list[str] = field(default_factory=list)
    error: OnboardingError | None = None


class WizardNavigator:
    """Guards every move away from the current step."""

    def __init__(
        self,
        repository: DraftRepository,
        registry: StepRegistry,
        prompt: Prompt | None = None,
        current_step: WizardStep | None = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.prompt = prompt
        self.current_step = current_step or repository.draft.current_step
        self.state = NavigationState.IDLE

    def validate_current_step(self) -> tuple[bool, list[str]]:
        """
        The pre-navigation gate.

        Uses the mounted step's validator when there is one, otherwise the
        draft itself. On the legal data step with no local edits pending,
        the repository's partition is re-checked as well.
        """
        handlers = self.registry.get(self.current_step)
        if handlers is None:
            return validate_step(self.current_step, self.repository.draft, self.repository.min_groups)

        ok, violations = normalize_validation(handlers.validate())
        pending = bool(handlers.has_changes and handlers.has_changes())
        if self.current_step is WizardStep.LEGAL_DATA and not pending:
            extra = [v for v in self.repository.check().violations if v not in violations]
            violations.extend(extra)
        return ok and not violations, violations

    def has_unsaved_changes(self) -> bool:
        handlers = self.registry.get(self.current_step)
        local = bool(handlers and handlers.has_changes and handlers.has_changes())
        return local or self.repository.dirty

    def needs_close_warning(self) -> bool:
        """Whether closing now could lose edits."""
        return self.has_unsaved_changes() or self.repository.saving

    async def go_next(self, prompt: Prompt | None = None) -> NavigationOutcome:
        return await self.request_navigation(next_step(self.current_step), prompt)

    async def go_back(self, prompt: Prompt | None = None) -> NavigationOutcome:
        return await self.request_navigation(previous_step(self.current_step), prompt)

    async def request_close(self, prompt: Prompt | None = None) -> NavigationOutcome:
        """Same checks as navigating, for an interrupted close."""
        return await self._leave(None, prompt)

    async def request_navigation(
        self,
        target: WizardStep | str,
        prompt: Prompt | None = None,
    ) -> NavigationOutcome:
        return await self._leave(WizardStep(target), prompt)

    async def _leave(self, target: WizardStep | None, prompt: Prompt | None) -> NavigationOutcome:
        if self.state is not NavigationState.IDLE:
            return NavigationOutcome(
                allowed=False,
                target=target,
                reason="busy",
                error=NavigationInProgressError("Another navigation is waiting for an answer"),
            )

        ok, violations = self.validate_current_step()
        if not ok:
            logger.info(f"Navigation from {self.current_step.value} blocked: {len(violations)} violation(s)")
            return NavigationOutcome(
                allowed=False,
                target=target,
                reason="invalid",
                violations=violations,
                error=ValidationFailure(violations),
            )

        await self.repository.wait_idle()

        if self.has_unsaved_changes():
            outcome = await self._resolve_unsaved(target, prompt or self.prompt)
            if outcome is not None:
                return outcome

        if target is not None:
            self._move_to(target)
        return NavigationOutcome(allowed=True, target=target)

    async def _resolve_unsaved(
        self,
        target: WizardStep | None,
        prompt: Prompt | None,
    ) -> NavigationOutcome | None:
        """Run the save/discard prompt. Returns an outcome only when navigation must stop."""
        handlers = self.registry.get(self.current_step)
        self.state = NavigationState.PROMPTING
        try:
            choice = await prompt(self.current_step, target) if prompt else PromptChoice.SAVE

            if choice is PromptChoice.CANCEL:
                return NavigationOutcome(allowed=False, target=target, reason="cancelled")

            if choice is PromptChoice.SAVE:
                self.state = NavigationState.SAVING
                saved = await (handlers.save() if handlers else self.repository.save())
                if not saved:
                    error = self.repository.last_error or SaveFailure("Save failed")
                    return NavigationOutcome(
                        allowed=False,
                        target=target,
                        reason="save_failed",
                        error=error,
                    )
                return None

            self.state = NavigationState.DISCARDING
            if not await self.repository.discard_changes():
                return NavigationOutcome(
                    allowed=False,
                    target=target,
                    reason="discard_failed",
                    error=self.repository.last_error or LoadFailure("Could not reload the draft"),
                )
            if handlers and handlers.discard:
                handlers.discard()
            return None
        finally:
            self.state = NavigationState.IDLE

    def _move_to(self, target: WizardStep) -> None:
        previous = self.current_step
        self.current_step = target
        if self.repository.draft.current_step is not target:
            self.repository.set_progress(target)
        logger.info(f"Moved from {previous.value} to {target.value}")
