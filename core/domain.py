"""
Domain Layer Base Classes.

The domain layer contains pure business logic with no external dependencies.
This makes business rules:
- Easy to test (no mocking needed)
- Reusable across different interfaces
- Clear and self-documenting

Example Usage:
    class ReturnStatusPolicy(PolicyEngine):
        def evaluate(self, context: dict) -> PolicyDecision:
            # Pure business logic here
            ...
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import SchemaViolation


class PolicyResult(Enum):
    """Result of a policy evaluation."""
    APPROVED = "approved"
    DENIED = "denied"


@dataclass
class PolicyDecision:
    """
    The outcome of a policy evaluation.

    Attributes:
        result: The policy decision result
        reason: Human-readable explanation
        metadata: Additional context for the decision
    """
    result: PolicyResult
    reason: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.result == PolicyResult.APPROVED

    @property
    def is_denied(self) -> bool:
        return self.result == PolicyResult.DENIED


class PolicyEngine(ABC):
    """
    Abstract base class for policy engines.

    A PolicyEngine encapsulates a set of business rules that can be
    evaluated against a context to produce a decision.
    """

    @abstractmethod
    def evaluate(self, context: Dict[str, Any]) -> PolicyDecision:
        """
        Evaluate the policy against the given context.

        Args:
            context: Dictionary containing all data needed for evaluation

        Returns:
            PolicyDecision with the result and explanation
        """
        pass


class DomainService(ABC):
    """
    Abstract base class for domain services.

    Domain services contain business logic that doesn't belong to a single entity.

    Key principles:
    - No I/O operations (database, network, file)
    - All dependencies passed as parameters
    - Return domain objects, not DTOs
    """

    @abstractmethod
    def execute(self, *args, **kwargs) -> Any:
        """
        Execute the domain service operation.

        Implementation should contain pure business logic only.
        """
        pass


# =============================================================================
# VALIDATION
# =============================================================================

# Violation rules
MISSING_REQUIRED = "missing_required"
TYPE_MISMATCH = "type_mismatch"
ENUM_VIOLATION = "enum_violation"
RANGE_VIOLATION = "range_violation"

CENT = Decimal("0.01")


@dataclass
class ValidationError:
    """A validation error with field path, rule and message."""
    field: str
    message: str
    code: str = TYPE_MISMATCH

    @property
    def rule(self) -> str:
        return self.code

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "rule": self.code, "message": self.message}


class Validator(ABC):
    """
    Abstract base class for validators.

    Validators check that data meets business requirements before processing.
    """

    @abstractmethod
    def validate(self, data: Dict[str, Any]) -> List[ValidationError]:
        """
        Validate the data and return any errors.

        Args:
            data: The data to validate

        Returns:
            List of ValidationError objects (empty if valid)
        """
        pass

    def is_valid(self, data: Dict[str, Any]) -> bool:
        """Check if data is valid."""
        return len(self.validate(data)) == 0

    def check(self, data: Dict[str, Any]) -> None:
        """Raise SchemaViolation carrying every error when data is invalid."""
        errors = self.validate(data)
        if errors:
            raise SchemaViolation(errors)


class DocumentSchemaValidator(Validator):
    """
    Validates documents against a declarative schema.

    The schema is a small subset of JSON Schema, the same shape the
    document store enforces at its boundary:

        {
            "required": ["name", "items"],
            "properties": {
                "name": {"type": "string", "maxLength": 200},
                "qty": {"type": "int", "minimum": 1},
                "kind": {"enum": ["a", "b"]},
                "items": {"type": "array", "minItems": 1, "items": {...}},
            },
        }

    Supported types: string, int, number, bool, date, object, array.
    Subclasses add cross-field rules by overriding validate_rules().
    """

    schema: Dict[str, Any] = {}

    def validate(self, data: Dict[str, Any]) -> List[ValidationError]:
        errors: List[ValidationError] = []
        self._validate_node(data, self.schema, "", errors)
        if isinstance(data, dict):
            errors.extend(self.validate_rules(data))
        return errors

    def validate_rules(self, data: Dict[str, Any]) -> List[ValidationError]:
        """Cross-field rules, run after the schema walk."""
        return []

    def _validate_node(
        self,
        value: Any,
        node: Dict[str, Any],
        path: str,
        errors: List[ValidationError],
    ) -> None:
        label = path or "document"

        expected = node.get("type")
        if expected and not matches_type(value, expected):
            errors.append(ValidationError(
                field=label,
                message=f"{label} must be of type {expected}",
                code=TYPE_MISMATCH,
            ))
            return

        if "enum" in node and value not in node["enum"]:
            errors.append(ValidationError(
                field=label,
                message=f"Invalid {label}. Must be one of: {', '.join(str(v) for v in node['enum'])}",
                code=ENUM_VIOLATION,
            ))
            return

        if "minimum" in node and is_number(value) and value < node["minimum"]:
            errors.append(ValidationError(
                field=label,
                message=f"{label} must be at least {node['minimum']}",
                code=RANGE_VIOLATION,
            ))

        if isinstance(value, str):
            if "maxLength" in node and len(value) > node["maxLength"]:
                errors.append(ValidationError(
                    field=label,
                    message=f"{label} must be at most {node['maxLength']} characters",
                    code=RANGE_VIOLATION,
                ))
            if "pattern" in node and not re.match(node["pattern"], value):
                errors.append(ValidationError(
                    field=label,
                    message=f"{label} does not match the expected format",
                    code=TYPE_MISMATCH,
                ))

        if isinstance(value, dict):
            for name in node.get("required", []):
                if is_missing(value.get(name)):
                    field_path = f"{path}.{name}" if path else name
                    errors.append(ValidationError(
                        field=field_path,
                        message=f"{field_path} is required",
                        code=MISSING_REQUIRED,
                    ))
            for name, child in node.get("properties", {}).items():
                if is_missing(value.get(name)):
                    continue
                field_path = f"{path}.{name}" if path else name
                self._validate_node(value[name], child, field_path, errors)

        if isinstance(value, list):
            min_items = node.get("minItems")
            if min_items is not None and len(value) < min_items:
                errors.append(ValidationError(
                    field=label,
                    message=f"At least {min_items} {label} required",
                    code=MISSING_REQUIRED,
                ))
            if "items" in node:
                for i, item in enumerate(value):
                    self._validate_node(item, node["items"], f"{path}[{i}]", errors)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def is_missing(value: Any) -> bool:
    """Treat None and blank strings as absent; empty lists are checked by minItems."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def is_number(value: Any) -> bool:
    """True for ints and floats, but not bools."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_integer(value: Any) -> bool:
    """True for ints and integral floats, but not bools."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def matches_type(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "int":
        return is_integer(value)
    if expected == "number":
        return is_number(value)
    if expected == "bool":
        return isinstance(value, bool)
    if expected == "date":
        if isinstance(value, (datetime, date)):
            return True
        return isinstance(value, str) and parse_date(value) is not None
    if expected == "object":
        return isinstance(value, dict)
    if expected == "array":
        return isinstance(value, list)
    raise ValueError(f"Unknown schema type: {expected}")


def round_money(amount: float) -> float:
    """Round a monetary amount to 2 decimals, half up."""
    return float(Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP))


def money_equal(a: float, b: float) -> bool:
    """Compare two monetary amounts at cent precision."""
    return abs(float(a) - float(b)) < 0.005


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO format date string (or date/datetime) safely."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    try:
        if "Z" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, TypeError):
        return None


def to_iso(value: Any) -> Optional[str]:
    """Serialize a date-like value to an ISO-8601 string."""
    parsed = parse_date(value)
    return parsed.astimezone(timezone.utc).isoformat() if parsed else None
