"""
Onboarding Sections - per-step record types and step validation.

Each wizard step owns a handful of draft fields. The records below give
those fields explicit types; a missing nested structure is a default value,
never a guess at runtime.

Records are parsed leniently (the draft is sparse until the owner reaches a
step). Required-field rules live in each record's `problems()` so that
validation reports every issue at once, as readable "<field>: <message>"
strings, instead of stopping at the first.
"""

import logging
import re
from typing import Callable, Literal, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from .consistency import DEFAULT_MIN_GROUPS, check_partition, confirmed_location_names
from .models import EMAIL_PATTERN, STRUCTURAL_FIELDS, Draft, WizardStep

logger = logging.getLogger(__name__)


PHONE_PATTERN = re.compile(r"^[0-9\-+() ]*$")
ZIP_PATTERN = re.compile(r"^[0-9]{5}(-[0-9]{4})?$")

DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
MAX_LOCATIONS = 50

RESTAURANT_TYPES = [
    "casual_dining",
    "fine_dining",
    "fast_casual",
    "quick_service",
    "cafe",
    "bar",
    "food_truck",
    "other",
]

PERSONALITY_OPTIONS = [
    "friendly",
    "professional",
    "casual",
    "formal",
    "enthusiastic",
    "calm",
    "humorous",
    "other",
]

# Reservation platforms that never have a booking link
LINKLESS_PLATFORMS = {"", "phone", "none", "walk_in"}


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


# =============================================================================
# Language
# =============================================================================

class LanguageSelection(BaseModel):
    """Wizard language chosen on the first page."""
    language: Literal["en", "es"] | None = None

    def problems(self) -> list[str]:
        return [] if self.language else ["language: required"]


# =============================================================================
# Legal Data
# =============================================================================

class LegalData(BaseModel):
    """Legal identity of the business and how many locations it runs."""

    legal_business_name: str = ""
    restaurant_type: str = ""
    other_restaurant_type: str = ""
    tax_id: str = ""
    irs_letter_url: str = Field(default="", description="Uploaded IRS letter (blob URL)")
    location_count: int = Field(default=1, ge=1, le=MAX_LOCATIONS)

    def problems(self) -> list[str]:
        errors = []
        name = self.legal_business_name.strip()
        if not name:
            errors.append("legal_business_name: required")
        elif len(name) < 2:
            errors.append("legal_business_name: must be at least 2 characters")
        if _blank(self.restaurant_type):
            errors.append("restaurant_type: required")
        elif self.restaurant_type not in RESTAURANT_TYPES:
            errors.append(f"restaurant_type: unknown type '{self.restaurant_type}'")
        elif self.restaurant_type == "other" and _blank(self.other_restaurant_type):
            errors.append("other_restaurant_type: required when restaurant type is 'other'")
        if _blank(self.tax_id):
            errors.append("tax_id: required")
        if _blank(self.irs_letter_url):
            errors.append("irs_letter_url: required")
        return errors


def location_problems(draft: Draft, location_count: int) -> list[str]:
    """Every location named and confirmed, and as many as declared."""
    errors = []
    if len(draft.locations) != location_count:
        errors.append(
            f"locations: expected {location_count} location(s), found {len(draft.locations)}"
        )
    for i, loc in enumerate(draft.locations, start=1):
        if not loc.name:
            errors.append(f"locations: location {i} needs a name")
        elif not loc.confirmed:
            if draft.same_menu_for_all:
                errors.append(f"locations: Location '{loc.name}' must be confirmed")
            else:
                errors.append(
                    f"locations: Location '{loc.name}' is not confirmed, "
                    f"so it cannot be assigned to a group"
                )
    return errors


# =============================================================================
# Contact Info
# =============================================================================

class ContactInfo(BaseModel):
    """Main point of contact and business address."""

    contact_name: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    same_for_all_locations: bool = True

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str | None) -> str:
        return (v or "").strip().lower()

    def problems(self) -> list[str]:
        errors = []
        for name in ("contact_name", "phone", "email", "address", "city", "state", "zip_code"):
            if _blank(getattr(self, name)):
                errors.append(f"{name}: required")
        if self.phone and not PHONE_PATTERN.match(self.phone):
            errors.append("phone: may only contain digits, spaces and - + ( )")
        if self.email and not EMAIL_PATTERN.match(self.email):
            errors.append("email: invalid email address")
        if self.zip_code and not ZIP_PATTERN.match(self.zip_code.strip()):
            errors.append("zip_code: must be 5 digits or 5+4 digits")
        return errors


# =============================================================================
# Location Details
# =============================================================================

class TimeSlot(BaseModel):
    start: str = ""
    end: str = ""
    type: str = ""
    kitchen_closing_time: str | None = None


class DaySchedule(BaseModel):
    enabled: bool = False
    time_slots: list[TimeSlot] = Field(default_factory=list)


def schedule_problems(prefix: str, schedule: dict[str, DaySchedule]) -> list[str]:
    """Enabled days need at least one complete time slot."""
    errors = []
    for day, day_schedule in schedule.items():
        if day not in DAYS:
            errors.append(f"{prefix}.{day}: unknown day")
            continue
        if not day_schedule.enabled:
            continue
        if not day_schedule.time_slots:
            errors.append(f"{prefix}.{day}: at least one time slot required")
        for i, slot in enumerate(day_schedule.time_slots):
            for name in ("start", "end", "type"):
                if _blank(getattr(slot, name)):
                    errors.append(f"{prefix}.{day}[{i}].{name}: required")
    return errors


class ParkingDetails(BaseModel):
    has_parking: bool = False
    parking_type: Literal["free", "paid"] | None = None
    pricing_details: str = ""
    location: str = ""

    def problems(self, prefix: str) -> list[str]:
        if not self.has_parking:
            return []
        errors = []
        if self.parking_type is None:
            errors.append(f"{prefix}.parking_type: required")
        if self.parking_type == "paid" and _blank(self.pricing_details):
            errors.append(f"{prefix}.pricing_details: required for paid parking")
        if _blank(self.location):
            errors.append(f"{prefix}.location: required")
        return errors


class ReservationSettings(BaseModel):
    accepts_reservations: bool = False
    platform: str = ""
    reservation_link: str = ""
    max_party_size: int | None = Field(default=None, ge=1)
    grace_period_minutes: int | None = Field(default=None, ge=0)
    schedule: dict[str, DaySchedule] = Field(default_factory=dict)

    def problems(self, prefix: str) -> list[str]:
        if not self.accepts_reservations:
            return []
        errors = []
        if _blank(self.platform):
            errors.append(f"{prefix}.platform: required when reservations are accepted")
        elif self.platform not in LINKLESS_PLATFORMS and _blank(self.reservation_link):
            errors.append(f"{prefix}.reservation_link: required for {self.platform}")
        errors.extend(schedule_problems(f"{prefix}.schedule", self.schedule))
        return errors


class ChannelSettings(BaseModel):
    """Pickup or delivery platforms."""
    platforms: list[str] = Field(default_factory=list)
    preferred_platform: str = ""
    preferred_platform_link: str = ""

    def problems(self, prefix: str) -> list[str]:
        if self.preferred_platform and self.preferred_platform not in self.platforms:
            return [f"{prefix}.preferred_platform: must be one of the selected platforms"]
        return []


class LocationDetail(BaseModel):
    """Operating details for one confirmed location, keyed by its name."""

    location_name: str
    street_address: str = ""
    state: str = ""
    time_zone: str = ""
    manager_email: str = ""
    phone_numbers: list[str] = Field(default_factory=list)
    accepted_payment_methods: list[str] = Field(default_factory=list)
    phone_carrier: str = ""
    schedule: dict[str, DaySchedule] = Field(default_factory=dict)
    reservation_settings: ReservationSettings = Field(default_factory=ReservationSettings)
    parking: ParkingDetails = Field(default_factory=ParkingDetails)
    pickup_settings: ChannelSettings = Field(default_factory=ChannelSettings)
    delivery_settings: ChannelSettings = Field(default_factory=ChannelSettings)

    def problems(self) -> list[str]:
        prefix = f"location_details[{self.location_name}]"
        errors = []
        for name in ("street_address", "state", "time_zone", "manager_email", "phone_carrier"):
            if _blank(getattr(self, name)):
                errors.append(f"{prefix}.{name}: required")
        if self.manager_email and not EMAIL_PATTERN.match(self.manager_email.strip().lower()):
            errors.append(f"{prefix}.manager_email: invalid email address")
        if not [p for p in self.phone_numbers if p.strip()]:
            errors.append(f"{prefix}.phone_numbers: at least one phone number required")
        for phone in self.phone_numbers:
            if not PHONE_PATTERN.match(phone):
                errors.append(f"{prefix}.phone_numbers: invalid phone number '{phone}'")
        if not self.accepted_payment_methods:
            errors.append(f"{prefix}.accepted_payment_methods: at least one required")
        errors.extend(schedule_problems(f"{prefix}.schedule", self.schedule))
        errors.extend(self.reservation_settings.problems(f"{prefix}.reservation_settings"))
        errors.extend(self.parking.problems(f"{prefix}.parking"))
        errors.extend(self.pickup_settings.problems(f"{prefix}.pickup_settings"))
        errors.extend(self.delivery_settings.problems(f"{prefix}.delivery_settings"))
        return errors


class LocationDetails(BaseModel):
    location_details: list[LocationDetail] = Field(default_factory=list)

    def problems_for(self, location_names: tuple[str, ...]) -> list[str]:
        """One complete entry per confirmed location, none for unknown names."""
        errors = []
        by_name = {d.location_name: d for d in self.location_details}
        for name in location_names:
            detail = by_name.get(name)
            if detail is None:
                errors.append(f"location_details[{name}]: details missing")
            else:
                errors.extend(detail.problems())
        for name in by_name:
            if name not in location_names:
                errors.append(f"location_details[{name}]: not a confirmed location")
        return errors


# =============================================================================
# AI Assistant
# =============================================================================

class AIConfig(BaseModel):
    """Phone assistant persona."""

    assistant_language: Literal["en", "es"] | None = None
    assistant_name: str = ""
    assistant_gender: Literal["male", "female", "neutral"] | None = None
    personality: list[str] = Field(default_factory=list)
    other_personality: str = ""
    additional_info: str = ""
    avatar_url: str = ""

    @field_validator("personality", mode="before")
    @classmethod
    def normalize_personality(cls, v: list[str] | None) -> list[str]:
        if not v:
            return []
        return list(dict.fromkeys(p.lower().strip() for p in v if p and p.strip()))

    def problems(self) -> list[str]:
        errors = []
        if self.assistant_language is None:
            errors.append("assistant_language: required")
        if _blank(self.assistant_name):
            errors.append("assistant_name: required")
        if self.assistant_gender is None:
            errors.append("assistant_gender: required")
        if not self.personality:
            errors.append("personality: choose at least one trait")
        unknown = set(self.personality) - set(PERSONALITY_OPTIONS)
        if unknown:
            logger.info(f"Custom personality traits submitted: {unknown}")
        if "other" in self.personality and _blank(self.other_personality):
            errors.append("other_personality: required when 'other' is chosen")
        return errors


# =============================================================================
# Menu
# =============================================================================

POPULAR_ITEM_FIELDS = (
    "popular_appetizers",
    "popular_main_courses",
    "popular_desserts",
    "popular_alcoholic_drinks",
    "popular_non_alcoholic_drinks",
)


class MenuGroupConfig(BaseModel):
    """Menu files and best sellers for one effective menu group."""

    regular_menu_url: str = ""
    has_dietary_menu: bool = False
    dietary_menu_url: str = ""
    has_vegan_menu: bool = False
    vegan_menu_url: str = ""
    other_menu_urls: list[str] = Field(default_factory=list)
    shared_dishes: str = ""
    shared_drinks: str = ""
    popular_appetizers: str = ""
    popular_main_courses: str = ""
    popular_desserts: str = ""
    popular_alcoholic_drinks: str = ""
    popular_non_alcoholic_drinks: str = ""

    def problems(self, prefix: str) -> list[str]:
        errors = []
        if _blank(self.regular_menu_url):
            errors.append(f"{prefix}.regular_menu_url: required")
        if self.has_dietary_menu and _blank(self.dietary_menu_url):
            errors.append(f"{prefix}.dietary_menu_url: required")
        if self.has_vegan_menu and _blank(self.vegan_menu_url):
            errors.append(f"{prefix}.vegan_menu_url: required")
        for name in POPULAR_ITEM_FIELDS:
            if _blank(getattr(self, name)):
                errors.append(f"{prefix}.{name}: required")
        return errors


class MenuConfig(BaseModel):
    menu_configs: dict[str, MenuGroupConfig] = Field(default_factory=dict)


# =============================================================================
# Tips
# =============================================================================

class TipPolicy(BaseModel):
    has_tips: Literal["yes", "no", "depends"] | None = None
    tip_details: str = ""
    has_service_charge: bool = False
    service_charge_details: str = ""

    def problems(self, prefix: str) -> list[str]:
        errors = []
        if self.has_tips is None:
            errors.append(f"{prefix}.has_tips: required")
        elif self.has_tips in ("yes", "depends") and _blank(self.tip_details):
            errors.append(f"{prefix}.tip_details: required")
        if self.has_service_charge and _blank(self.service_charge_details):
            errors.append(f"{prefix}.service_charge_details: required")
        return errors


class TipsPolicy(BaseModel):
    """Tip policy per location, or per menu group when `use_groups`."""

    use_groups: bool = False
    location_policies: dict[str, TipPolicy] = Field(default_factory=dict)
    group_policies: dict[str, TipPolicy] = Field(default_factory=dict)


# =============================================================================
# Observations & Review
# =============================================================================

class Observations(BaseModel):
    additional_notes: str = ""
    special_requirements: str = ""


class Review(BaseModel):
    terms_accepted: bool = False

    def problems(self) -> list[str]:
        return [] if self.terms_accepted else ["terms_accepted: please accept the terms"]


# =============================================================================
# Step wiring
# =============================================================================

STEP_SECTIONS: dict[WizardStep, type[BaseModel]] = {
    WizardStep.LANGUAGE: LanguageSelection,
    WizardStep.LEGAL_DATA: LegalData,
    WizardStep.CONTACT_INFO: ContactInfo,
    WizardStep.LOCATION_DETAILS: LocationDetails,
    WizardStep.AI_CONFIG: AIConfig,
    WizardStep.MENU_CONFIG: MenuConfig,
    WizardStep.TIPS_POLICY: TipsPolicy,
    WizardStep.OBSERVATIONS: Observations,
    WizardStep.REVIEW: Review,
}

# Draft keys each step reads and writes
STEP_FIELDS: dict[WizardStep, tuple[str, ...]] = {
    step: tuple(model.model_fields) for step, model in STEP_SECTIONS.items()
}
STEP_FIELDS[WizardStep.LEGAL_DATA] += tuple(sorted(STRUCTURAL_FIELDS))
STEP_FIELDS[WizardStep.COMPLETE] = ()

SectionT = TypeVar("SectionT", bound=BaseModel)


def format_validation_error(error: ValidationError) -> list[str]:
    """Flatten a pydantic error into "<field>: <message>" strings."""
    messages = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "value"
        messages.append(f"{loc}: {err['msg']}")
    return messages


def read_section(model: type[SectionT], draft: Draft) -> tuple[SectionT | None, list[str]]:
    """
    Parse one section record out of the draft's fields.

    Unset (None) values fall back to the record defaults.

    Returns:
        (section, errors) - section is None when the stored values have
        the wrong shape, and errors then explains why.
    """
    data = {
        name: draft.fields[name]
        for name in model.model_fields
        if draft.fields.get(name) is not None
    }
    try:
        return model.model_validate(data), []
    except ValidationError as e:
        return None, format_validation_error(e)


def _validate_language(draft: Draft, min_groups: int) -> list[str]:
    section, errors = read_section(LanguageSelection, draft)
    return errors or section.problems()


def _validate_legal_data(draft: Draft, min_groups: int) -> list[str]:
    section, errors = read_section(LegalData, draft)
    if section is not None:
        errors = section.problems() + location_problems(draft, section.location_count)
    partition = check_partition(draft.locations, draft.groups, draft.same_menu_for_all, min_groups)
    return errors + list(partition.violations)


def _validate_contact_info(draft: Draft, min_groups: int) -> list[str]:
    section, errors = read_section(ContactInfo, draft)
    return errors or section.problems()


def _validate_location_details(draft: Draft, min_groups: int) -> list[str]:
    section, errors = read_section(LocationDetails, draft)
    return errors or section.problems_for(confirmed_location_names(draft.locations))


def _validate_ai_config(draft: Draft, min_groups: int) -> list[str]:
    section, errors = read_section(AIConfig, draft)
    return errors or section.problems()


def _validate_menu_config(draft: Draft, min_groups: int) -> list[str]:
    section, errors = read_section(MenuConfig, draft)
    if errors:
        return errors
    partition = check_partition(draft.locations, draft.groups, draft.same_menu_for_all, min_groups)
    if not partition.ok:
        return ["groups: fix the location groups before configuring menus"]
    for group in partition.effective_groups:
        prefix = f"menu_configs[{group.name or group.id}]"
        config = section.menu_configs.get(group.id)
        if config is None:
            errors.append(f"{prefix}: menu missing")
        else:
            errors.extend(config.problems(prefix))
    return errors


def _validate_tips_policy(draft: Draft, min_groups: int) -> list[str]:
    section, errors = read_section(TipsPolicy, draft)
    if errors:
        return errors
    if section.use_groups:
        partition = check_partition(
            draft.locations, draft.groups, draft.same_menu_for_all, min_groups
        )
        keys = [(g.id, g.name or g.id) for g in partition.effective_groups]
        policies, label = section.group_policies, "group_policies"
    else:
        keys = [(name, name) for name in confirmed_location_names(draft.locations)]
        policies, label = section.location_policies, "location_policies"

    for key, display in keys:
        prefix = f"{label}[{display}]"
        policy = policies.get(key)
        if policy is None:
            errors.append(f"{prefix}: tip policy missing")
        else:
            errors.extend(policy.problems(prefix))
    return errors


def _validate_observations(draft: Draft, min_groups: int) -> list[str]:
    _, errors = read_section(Observations, draft)
    return errors


def _validate_review(draft: Draft, min_groups: int) -> list[str]:
    section, errors = read_section(Review, draft)
    return errors or section.problems()


_VALIDATORS: dict[WizardStep, Callable[[Draft, int], list[str]]] = {
    WizardStep.LANGUAGE: _validate_language,
    WizardStep.LEGAL_DATA: _validate_legal_data,
    WizardStep.CONTACT_INFO: _validate_contact_info,
    WizardStep.LOCATION_DETAILS: _validate_location_details,
    WizardStep.AI_CONFIG: _validate_ai_config,
    WizardStep.MENU_CONFIG: _validate_menu_config,
    WizardStep.TIPS_POLICY: _validate_tips_policy,
    WizardStep.OBSERVATIONS: _validate_observations,
    WizardStep.REVIEW: _validate_review,
}


def validate_step(
    step: WizardStep,
    draft: Draft,
    min_groups: int = DEFAULT_MIN_GROUPS,
) -> tuple[bool, list[str]]:
    """
    Validate one step's data in the draft.

    Returns:
        (is_valid, error_messages)
    """
    validator = _VALIDATORS.get(step)
    if validator is None:
        return True, []
    errors = validator(draft, min_groups)
    return len(errors) == 0, errors
