"""CV document and profile validation built on the sanitization helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cvforge.errors import InvalidInputError, SanitizationError
from cvforge.sanitization import sanitize_email, sanitize_phone, sanitize_string, sanitize_url

MAX_TITLE_LENGTH = 200
MAX_NAME_LENGTH = 100
MAX_SHORT_TEXT_LENGTH = 150
MAX_DATE_LENGTH = 32
MAX_LONG_TEXT_LENGTH = 5000
MAX_SECTION_ITEMS = 50
MAX_TECHNOLOGIES = 30

CVTemplate = Literal[
    "modern",
    "classic",
    "creative",
    "professional",
    "minimal",
    "executive",
    "techpro",
    "elegant",
    "bold",
]
CVStatus = Literal["draft", "completed", "published"]
CVLanguage = Literal["tr", "en"]
SkillLevel = Literal["beginner", "intermediate", "advanced", "expert"]
LanguageLevel = Literal["basic", "intermediate", "fluent", "native"]


def _optional_url(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return sanitize_url(value)


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)


class PersonalInfo(_Section):
    """Contact block shown at the top of every template."""

    full_name: str = Field(alias="fullName", min_length=2, max_length=MAX_NAME_LENGTH)
    title: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    email: str
    phone: str
    location: str = Field(default="", max_length=MAX_SHORT_TEXT_LENGTH)
    linkedin: str | None = None
    github: str | None = None
    instagram: str | None = None
    website: str | None = None
    summary: str = Field(default="", max_length=MAX_LONG_TEXT_LENGTH)

    @field_validator("email", mode="before")
    @classmethod
    def _validate_email(cls, value: Any) -> str:
        return sanitize_email(value)

    @field_validator("phone", mode="before")
    @classmethod
    def _validate_phone(cls, value: Any) -> str:
        return sanitize_phone(value)

    @field_validator("linkedin", "github", "instagram", "website", mode="before")
    @classmethod
    def _validate_links(cls, value: Any) -> str | None:
        return _optional_url(value)


class WorkExperience(_Section):
    company: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    position: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    start_date: str = Field(alias="startDate", min_length=1, max_length=MAX_DATE_LENGTH)
    end_date: str | None = Field(default=None, alias="endDate", max_length=MAX_DATE_LENGTH)
    current: bool = False
    description: str | None = Field(default=None, max_length=MAX_LONG_TEXT_LENGTH)
    location: str | None = Field(default=None, max_length=MAX_SHORT_TEXT_LENGTH)


class Education(_Section):
    school: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    degree: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    field: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    start_date: str = Field(alias="startDate", min_length=1, max_length=MAX_DATE_LENGTH)
    end_date: str | None = Field(default=None, alias="endDate", max_length=MAX_DATE_LENGTH)
    current: bool = False
    gpa: str | None = Field(default=None, max_length=10)


class Skill(_Section):
    name: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    level: SkillLevel = "intermediate"


class Language(_Section):
    name: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    level: LanguageLevel = "intermediate"


class Certification(_Section):
    name: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    issuer: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    date: str = Field(min_length=1, max_length=MAX_DATE_LENGTH)
    url: str | None = None

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str | None:
        return _optional_url(value)


class Project(_Section):
    name: str = Field(min_length=1, max_length=MAX_SHORT_TEXT_LENGTH)
    description: str = Field(min_length=1, max_length=MAX_LONG_TEXT_LENGTH)
    technologies: list[str] = Field(default_factory=list, max_length=MAX_TECHNOLOGIES)
    url: str | None = None
    start_date: str | None = Field(default=None, alias="startDate", max_length=MAX_DATE_LENGTH)
    end_date: str | None = Field(default=None, alias="endDate", max_length=MAX_DATE_LENGTH)

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: Any) -> str | None:
        return _optional_url(value)


class CVPayload(_Section):
    """Full CV document as accepted from the builder UI."""

    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    template: CVTemplate = "modern"
    status: CVStatus = "draft"
    cv_language: CVLanguage = Field(default="tr", alias="cvLanguage")
    color_palette: str | None = Field(default=None, alias="colorPalette", max_length=500)
    personal_info: PersonalInfo = Field(alias="personalInfo")
    summary: str | None = Field(default=None, max_length=MAX_LONG_TEXT_LENGTH)
    work_experience: list[WorkExperience] = Field(
        default_factory=list,
        alias="workExperience",
        max_length=MAX_SECTION_ITEMS,
    )
    education: list[Education] = Field(default_factory=list, max_length=MAX_SECTION_ITEMS)
    skills: list[Skill] = Field(default_factory=list, max_length=MAX_SECTION_ITEMS)
    languages: list[Language] = Field(default_factory=list, max_length=MAX_SECTION_ITEMS)
    certifications: list[Certification] = Field(default_factory=list, max_length=MAX_SECTION_ITEMS)
    projects: list[Project] = Field(default_factory=list, max_length=MAX_SECTION_ITEMS)


@dataclass(slots=True)
class ValidatedCV:
    """Validated CV plus the JSON document that gets persisted."""

    cv: CVPayload
    document: dict[str, Any]


class CVValidationError(ValueError):
    """Structured validation error container for API responses."""

    def __init__(self, errors: list[dict[str, str]]):
        super().__init__("CV validation failed")
        self.errors = errors

    @classmethod
    def from_pydantic_error(cls, exc: ValidationError) -> CVValidationError:
        details: list[dict[str, str]] = []
        for err in exc.errors():
            field = ".".join(str(item) for item in err["loc"]) or "cv"
            cause = (err.get("ctx") or {}).get("error")
            if isinstance(cause, SanitizationError):
                details.append({"field": field, "message": cause.message, "type": cause.error_type})
                continue
            details.append(
                {
                    "field": field,
                    "message": err["msg"],
                    "type": err["type"],
                }
            )
        return cls(details)


def validate_cv_payload(payload: dict[str, Any]) -> ValidatedCV:
    """
    Validate a sanitized CV body and build its storage document.

    Raises:
        CVValidationError: when the payload does not satisfy schema rules.
    """

    try:
        cv = CVPayload.model_validate(payload)
    except ValidationError as exc:
        raise CVValidationError.from_pydantic_error(exc) from exc

    return ValidatedCV(cv=cv, document=cv.model_dump(by_alias=True, mode="json"))


@dataclass(frozen=True, slots=True)
class ProfileUpdate:
    full_name: str
    email: str
    phone: str | None


def validate_profile_update(payload: dict[str, Any]) -> ProfileUpdate:
    """Sanitize a profile update body; sanitizer errors propagate unchanged."""

    if not isinstance(payload, dict):
        raise InvalidInputError("Profile update must be an object")

    full_name = sanitize_string(
        payload.get("fullName"),
        min_length=2,
        max_length=MAX_NAME_LENGTH,
        field="fullName",
    )
    email = sanitize_email(payload.get("email"))
    raw_phone = payload.get("phone")
    phone = sanitize_phone(raw_phone) if raw_phone else None
    return ProfileUpdate(full_name=full_name, email=email, phone=phone)
