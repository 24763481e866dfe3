"""
Error taxonomy shared by the handlers and the integrity layer.

Every error body has the shape ``{"errors": [{"error": ..., "error_description": ...}]}``.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List

from fastapi.exceptions import RequestValidationError


@dataclass(frozen=True)
class Violation:
    field: str
    kind: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "error": "validation_error",
            "field": self.field,
            "kind": self.kind,
            "error_description": self.message,
        }


class ApiError(Exception):
    status_code = 500
    error = "server_error"

    def __init__(self, description: str = "Internal server error"):
        super().__init__(description)
        self.description = description

    def to_dicts(self) -> List[Dict[str, str]]:
        return [{"error": self.error, "error_description": self.description}]


class NotFoundError(ApiError):
    status_code = 404
    error = "not_found"

    def __init__(self, entity: str):
        super().__init__(f"{entity.capitalize()} not found")
        self.entity = entity

    @property
    def kind(self) -> str:
        return f"{self.entity}_not_found"

    def to_dicts(self) -> List[Dict[str, str]]:
        return [{
            "error": self.error,
            "entity": self.entity,
            "kind": self.kind,
            "error_description": self.description,
        }]


class ValidationFailed(ApiError):
    status_code = 400
    error = "validation_error"

    def __init__(self, violations: Iterable[Violation]):
        self.violations = list(violations)
        super().__init__("; ".join(v.message for v in self.violations))

    @property
    def kinds(self) -> List[str]:
        return [v.kind for v in self.violations]

    def to_dicts(self) -> List[Dict[str, str]]:
        return [v.to_dict() for v in self.violations]


class AuthenticationError(ApiError):
    status_code = 401
    error = "invalid_token"

    def __init__(self, description: str = "Invalid token", error: str = "invalid_token"):
        super().__init__(description)
        self.error = error


class PermissionDenied(ApiError):
    status_code = 403
    error = "forbidden"

    def __init__(self, description: str = "Forbidden"):
        super().__init__(description)


def format_errors(*errors: Dict[str, str]) -> Dict[str, List[Dict[str, str]]]:
    return {"errors": list(errors)}


def format_server_error() -> Dict[str, List[Dict[str, str]]]:
    return format_errors({"error": "server_error", "error_description": "Internal server error"})


def violations_from_request_error(exc: RequestValidationError) -> List[Violation]:
    return violations_from_errors(exc.errors())


def violations_from_errors(errors: Iterable[dict]) -> List[Violation]:
    """Translates pydantic errors (request or model level) into field violations."""
    violations = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in ("body", "query", "path"):
            loc = loc[1:]
        field = ".".join(loc) or "body"
        kind = err.get("type", "invalid")
        if kind == "missing":
            violations.append(Violation(field, "required", f"{field.capitalize()} is required"))
        else:
            violations.append(Violation(field, kind, err.get("msg", "Invalid value")))
    return violations
