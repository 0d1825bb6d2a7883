"""
Onboarding Draft Model.

One Draft per business owner accumulates the answers of every wizard step.
The persisted document is flat: each form field is a top-level key so that
merge-writes are keyed per field and a late save can only touch the fields
it carries.

Locations and menu groups are frozen dataclasses held in tuples. A change
always produces a new tuple, which keeps structural comparison of drafts
(dirty detection) honest.
"""

import copy
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable


class WizardStep(Enum):
    """Wizard steps, in navigation order."""
    LANGUAGE = "language"
    LEGAL_DATA = "legal_data"
    CONTACT_INFO = "contact_info"
    LOCATION_DETAILS = "location_details"
    AI_CONFIG = "ai_config"
    MENU_CONFIG = "menu_config"
    TIPS_POLICY = "tips_policy"
    OBSERVATIONS = "observations"
    REVIEW = "review"
    COMPLETE = "complete"


STEP_ORDER = list(WizardStep)


def next_step(step: WizardStep) -> WizardStep:
    """Step after `step` (COMPLETE stays COMPLETE)."""
    idx = STEP_ORDER.index(step)
    return STEP_ORDER[min(idx + 1, len(STEP_ORDER) - 1)]


def previous_step(step: WizardStep) -> WizardStep:
    """Step before `step` (LANGUAGE stays LANGUAGE)."""
    idx = STEP_ORDER.index(step)
    return STEP_ORDER[max(idx - 1, 0)]


class InvitationStatus(str, Enum):
    """Audit status of a share invitation."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """Lowercase and trim an email address, rejecting malformed ones."""
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError(f"Invalid email address: {email!r}")
    return normalized


def utc_now_iso() -> str:
    """Current UTC time as ISO 8601."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Locations & Groups
# =============================================================================


@dataclass(frozen=True)
class Location:
    """A restaurant location. Only confirmed names take part in grouping."""
    name: str = ""
    confirmed: bool = False

    def to_dict(self) -> dict:
        return {"name": self.name, "confirmed": self.confirmed}

    @classmethod
    def from_dict(cls, data: dict) -> "Location":
        # Documents written by the first web client used `nameConfirmed`
        confirmed = data.get("confirmed", data.get("nameConfirmed", False))
        return cls(name=str(data.get("name") or ""), confirmed=bool(confirmed))


@dataclass(frozen=True)
class MenuGroup:
    """A named subset of confirmed locations sharing one menu."""
    id: str
    name: str
    location_names: frozenset[str] = frozenset()
    confirmed: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location_names": sorted(self.location_names),
            "confirmed": self.confirmed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MenuGroup":
        names = data.get("location_names", data.get("locations", []))
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            location_names=frozenset(str(n) for n in names or []),
            confirmed=bool(data.get("confirmed", data.get("nameConfirmed", False))),
        )


def coerce_locations(value: Iterable[Location | dict] | None) -> tuple[Location, ...]:
    """Build a locations tuple from Location objects or plain dicts."""
    if not value:
        return ()
    return tuple(
        loc if isinstance(loc, Location) else Location.from_dict(loc)
        for loc in value
    )


def coerce_groups(value: Iterable[MenuGroup | dict] | None) -> tuple[MenuGroup, ...]:
    """Build a groups tuple from MenuGroup objects or plain dicts."""
    if not value:
        return ()
    return tuple(
        g if isinstance(g, MenuGroup) else MenuGroup.from_dict(g)
        for g in value
    )


# =============================================================================
# Draft
# =============================================================================

# Keys of the persisted document that are not free-form fields
STRUCTURAL_FIELDS = frozenset({"locations", "groups", "same_menu_for_all"})
METADATA_FIELDS = frozenset({
    "owner_id",
    "owner_email",
    "shared_with",
    "current_step",
    "is_complete",
    "last_updated",
})
RESERVED_KEYS = STRUCTURAL_FIELDS | METADATA_FIELDS

# Reserved keys that step pages may not write through update_field. Progress
# (current_step, is_complete) moves only through navigation and submission.
READ_ONLY_KEYS = frozenset({
    "owner_id",
    "owner_email",
    "shared_with",
    "last_updated",
    "current_step",
    "is_complete",
})


@dataclass
class Draft:
    """
    An owner's accumulating onboarding record.

    `fields` is the open, sparse mapping of step-defined answers. Structural
    data (locations, groups, the same-menu toggle) and metadata have typed
    attributes.
    """
    owner_id: str
    owner_email: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    locations: tuple[Location, ...] = ()
    groups: tuple[MenuGroup, ...] = ()
    same_menu_for_all: bool = True
    shared_with: list[str] = field(default_factory=list)
    current_step: WizardStep = WizardStep.LANGUAGE
    is_complete: bool = False
    last_updated: str | None = None

    @classmethod
    def empty(cls, owner_id: str, owner_email: str | None = None) -> "Draft":
        """A fresh draft seeded with the wizard defaults (one unnamed location)."""
        return cls(
            owner_id=owner_id,
            owner_email=owner_email,
            fields={"location_count": 1},
            locations=(Location(),),
        )

    def get(self, name: str, default: Any = None) -> Any:
        """Read a field or structural value by name."""
        if name in RESERVED_KEYS:
            value = getattr(self, name)
            return value.value if isinstance(value, WizardStep) else value
        return self.fields.get(name, default)

    def with_value(self, name: str, value: Any) -> "Draft":
        """Return a copy of the draft with one value replaced."""
        return self.with_values({name: value})

    def with_values(self, values: dict[str, Any]) -> "Draft":
        """Return a copy of the draft with several values replaced."""
        changes: dict[str, Any] = {}
        fields = dict(self.fields)
        for name, value in values.items():
            if name == "locations":
                changes["locations"] = coerce_locations(value)
            elif name == "groups":
                changes["groups"] = coerce_groups(value)
            elif name == "same_menu_for_all":
                changes["same_menu_for_all"] = bool(value)
            elif name == "shared_with":
                changes["shared_with"] = list(value or [])
            elif name == "current_step":
                changes["current_step"] = WizardStep(value)
            elif name in ("is_complete",):
                changes[name] = bool(value)
            elif name in METADATA_FIELDS:
                changes[name] = value
            else:
                fields[name] = copy.deepcopy(value)
        return replace(self, fields=fields, **changes)

    def has_collaborator(self, email: str | None) -> bool:
        if not email:
            return False
        return email.strip().lower() in {e.lower() for e in self.shared_with}

    def to_document(self) -> dict[str, Any]:
        """Flatten to the persisted document shape."""
        document = copy.deepcopy(self.fields)
        document.update({
            "owner_id": self.owner_id,
            "owner_email": self.owner_email,
            "locations": [loc.to_dict() for loc in self.locations],
            "groups": [g.to_dict() for g in self.groups],
            "same_menu_for_all": self.same_menu_for_all,
            "shared_with": list(self.shared_with),
            "current_step": self.current_step.value,
            "is_complete": self.is_complete,
            "last_updated": self.last_updated,
        })
        return document

    @classmethod
    def from_document(cls, document: dict[str, Any], owner_id: str | None = None) -> "Draft":
        """Rebuild a draft from a persisted document."""
        data = dict(document)
        fields = {k: copy.deepcopy(v) for k, v in data.items() if k not in RESERVED_KEYS}

        step = data.get("current_step") or WizardStep.LANGUAGE.value
        try:
            current_step = WizardStep(step)
        except ValueError:
            current_step = WizardStep.LANGUAGE

        return cls(
            owner_id=owner_id or str(data.get("owner_id") or ""),
            owner_email=data.get("owner_email"),
            fields=fields,
            locations=coerce_locations(data.get("locations")),
            groups=coerce_groups(data.get("groups")),
            same_menu_for_all=bool(data.get("same_menu_for_all", True)),
            shared_with=list(data.get("shared_with") or []),
            current_step=current_step,
            is_complete=bool(data.get("is_complete", False)),
            last_updated=data.get("last_updated"),
        )


# =============================================================================
# Sharing
# =============================================================================


@dataclass
class ShareInvitation:
    """Audit record of an access grant. Access never depends on it."""
    form_owner_id: str
    recipient_email: str
    status: InvitationStatus = InvitationStatus.PENDING
    owner_email: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "form_owner_id": self.form_owner_id,
            "recipient_email": self.recipient_email,
            "owner_email": self.owner_email,
            "status": self.status.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ShareInvitation":
        return cls(
            id=str(data["id"]),
            form_owner_id=str(data["form_owner_id"]),
            recipient_email=str(data["recipient_email"]),
            owner_email=data.get("owner_email"),
            status=InvitationStatus(data.get("status", InvitationStatus.PENDING.value)),
            created_at=data.get("created_at") or utc_now_iso(),
        )
