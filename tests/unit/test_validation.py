import pytest

from cvforge.errors import InvalidInputError, ValidationError
from cvforge.validation import CVValidationError, validate_cv_payload, validate_profile_update


def _valid_payload() -> dict:
    return {
        "title": "Backend Engineer",
        "template": "techpro",
        "cvLanguage": "en",
        "personalInfo": {
            "fullName": "Ada Yilmaz",
            "title": "Engineer",
            "email": "Ada@Example.com",
            "phone": "+90 (555) 123-4567",
            "location": "Istanbul",
            "github": "https://github.com/ada",
            "linkedin": "",
        },
        "workExperience": [
            {
                "company": "Example Corp",
                "position": "Engineer",
                "startDate": "2021-03",
                "current": True,
            }
        ],
        "skills": [{"name": "Python", "level": "expert"}],
        "languages": [{"name": "English", "level": "fluent"}],
        "projects": [
            {
                "name": "Billing",
                "description": "Rebuilt invoicing.",
                "technologies": ["Python", "PostgreSQL"],
                "url": "https://example.com/billing",
            }
        ],
        "unknownField": "ignored",
    }


def _fields(exc_info: pytest.ExceptionInfo[CVValidationError]) -> dict[str, dict[str, str]]:
    return {error["field"]: error for error in exc_info.value.errors}


def test_validate_cv_payload_builds_document() -> None:
    validated = validate_cv_payload(_valid_payload())

    assert validated.cv.template == "techpro"
    assert validated.cv.status == "draft"
    personal = validated.document["personalInfo"]
    assert personal["email"] == "ada@example.com"
    assert personal["phone"] == "+905551234567"
    assert personal["linkedin"] is None
    assert validated.document["workExperience"][0]["startDate"] == "2021-03"
    assert validated.document["cvLanguage"] == "en"
    assert "unknownField" not in validated.document


def test_validate_cv_payload_defaults() -> None:
    payload = _valid_payload()
    del payload["template"]
    del payload["cvLanguage"]

    validated = validate_cv_payload(payload)

    assert validated.cv.template == "modern"
    assert validated.cv.cv_language == "tr"


def test_validate_cv_payload_reports_sanitizer_errors_by_field() -> None:
    payload = _valid_payload()
    payload["personalInfo"]["email"] = "not-an-email"
    payload["personalInfo"]["website"] = "javascript:alert(1)"

    with pytest.raises(CVValidationError) as exc_info:
        validate_cv_payload(payload)

    errors = _fields(exc_info)
    assert errors["personalInfo.email"]["type"] == "value_error.validation"
    assert errors["personalInfo.email"]["message"] == "Email address is missing '@'"
    assert errors["personalInfo.website"]["message"] == "URL scheme must be http or https"


def test_validate_cv_payload_rejects_unknown_enum_values() -> None:
    payload = _valid_payload()
    payload["skills"][0]["level"] = "wizard"
    payload["template"] = "neon"

    with pytest.raises(CVValidationError) as exc_info:
        validate_cv_payload(payload)

    errors = _fields(exc_info)
    assert "skills.0.level" in errors
    assert "template" in errors


def test_validate_cv_payload_requires_personal_info() -> None:
    payload = _valid_payload()
    del payload["personalInfo"]

    with pytest.raises(CVValidationError) as exc_info:
        validate_cv_payload(payload)

    assert "personalInfo" in _fields(exc_info)


def test_validate_cv_payload_rejects_oversized_title() -> None:
    payload = _valid_payload()
    payload["title"] = "t" * 500

    with pytest.raises(CVValidationError) as exc_info:
        validate_cv_payload(payload)

    assert "title" in _fields(exc_info)


def test_validate_profile_update_sanitizes_fields() -> None:
    update = validate_profile_update(
        {"fullName": "  <b>Deniz</b> Kaya ", "email": " DENIZ@example.com", "phone": "0555 987 65 43"}
    )

    assert update.full_name == "Deniz Kaya"
    assert update.email == "deniz@example.com"
    assert update.phone == "05559876543"


def test_validate_profile_update_phone_is_optional() -> None:
    update = validate_profile_update({"fullName": "Deniz", "email": "deniz@example.com"})
    assert update.phone is None


def test_validate_profile_update_rejects_short_name() -> None:
    with pytest.raises(ValidationError) as exc_info:
        validate_profile_update({"fullName": "<i>D</i>", "email": "deniz@example.com"})
    assert exc_info.value.field == "fullName"


def test_validate_profile_update_rejects_non_string_email() -> None:
    with pytest.raises(InvalidInputError) as exc_info:
        validate_profile_update({"fullName": "Deniz", "email": {"$ne": None}})
    assert exc_info.value.field == "email"


def test_validate_profile_update_requires_mapping() -> None:
    with pytest.raises(InvalidInputError):
        validate_profile_update(["fullName"])
