"""
=============================================================================
INPUT VALIDATION
=============================================================================

Rules are pipe-separated strings, one per field:

    validator = Validator({
        "title":    "required|string|max:255",
        "status":   "required|in:pending,in_progress,completed",
        "due_date": "nullable|date",
    })

    result = validator.check(request.all())
    if not result.valid:
        ...                       # result.errors == {"title": ["..."]}

    data = validator.validate(request.all())   # raises ValidationError (422)

=============================================================================
RULES
=============================================================================

    required     present and not empty ("" / None / [] fail)
    nullable     empty values skip every other rule and become None
    string       str
    integer      int, or a str of digits (converted)
    numeric      int/float, or a str that parses as a float (converted)
    boolean      bool, 0/1, "true"/"false"/"on"/"off"/"yes"/"no" (converted)
    email        something@something.tld
    confirmed    equals the <field>_confirmation input
    date         ISO date YYYY-MM-DD
    in:a,b,c     one of the listed strings
    min:n        strings: length >= n, numbers: value >= n
    max:n        strings: length <= n, numbers: value <= n

Only fields named in the rules end up in the validated data. A field
without `required` that is missing is simply left out.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
import re

from .errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

TRUE_WORDS = frozenset({"1", "true", "on", "yes"})
FALSE_WORDS = frozenset({"0", "false", "off", "no"})

KNOWN_RULES = frozenset({
    "required", "nullable", "string", "integer", "numeric", "boolean",
    "email", "date", "in", "min", "max", "confirmed",
})


@dataclass
class ValidationResult:
    valid: bool
    errors: Dict[str, List[str]] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)

    def first(self, name: str) -> Optional[str]:
        messages = self.errors.get(name)
        return messages[0] if messages else None


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list, dict)) and len(value) == 0)


def parse_rules(rules: Union[str, List[str]]) -> List[Tuple[str, Optional[str]]]:
    """'required|max:255' -> [('required', None), ('max', '255')]"""
    parts = rules.split("|") if isinstance(rules, str) else list(rules)
    parsed = []
    for part in parts:
        part = part.strip()
        if not part:
            continue
        name, _, argument = part.partition(":")
        if name not in KNOWN_RULES:
            raise ValueError(f"Unknown validation rule: {name}")
        parsed.append((name, argument if argument else None))
    return parsed


class Validator:
    def __init__(self, rules: Mapping[str, Union[str, List[str]]], messages: Optional[Mapping[str, str]] = None):
        self.rules = {name: parse_rules(spec) for name, spec in rules.items()}
        self.messages = dict(messages or {})

    def check(self, data: Mapping[str, Any]) -> ValidationResult:
        errors: Dict[str, List[str]] = {}
        clean: Dict[str, Any] = {}

        for name, rules in self.rules.items():
            rule_names = {rule for rule, _ in rules}
            value = data.get(name)

            if _is_empty(value):
                if "required" in rule_names:
                    errors.setdefault(name, []).append(self._message(name, "required"))
                elif "nullable" in rule_names and name in data:
                    clean[name] = None
                continue

            value = value.strip() if isinstance(value, str) else value
            field_errors = []
            for rule, argument in rules:
                if rule in ("required", "nullable"):
                    continue
                if rule == "confirmed":
                    ok = data.get(f"{name}_confirmation") == value
                else:
                    ok, value = self._apply(rule, argument, value, rule_names)
                if not ok:
                    field_errors.append(self._message(name, rule, argument))
                    break

            if field_errors:
                errors[name] = field_errors
            else:
                clean[name] = value

        return ValidationResult(valid=not errors, errors=errors, data=clean)

    def validate(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Raises:
            ValidationError: If any field fails; carries the errors and the
                original input so a form can be refilled.
        """
        result = self.check(data)
        if not result.valid:
            raise ValidationError(result.errors, old_input=dict(data))
        return result.data

    # =========================================================================
    # RULES
    # =========================================================================

    def _apply(self, rule: str, argument: Optional[str], value: Any, rule_names: set) -> Tuple[bool, Any]:
        if rule == "string":
            return isinstance(value, str), value

        if rule == "integer":
            if isinstance(value, bool):
                return False, value
            if isinstance(value, int):
                return True, value
            if isinstance(value, str) and INTEGER_PATTERN.match(value):
                return True, int(value)
            return False, value

        if rule == "numeric":
            if isinstance(value, bool):
                return False, value
            if isinstance(value, (int, float)):
                return True, value
            try:
                return True, float(value)
            except (TypeError, ValueError):
                return False, value

        if rule == "boolean":
            if isinstance(value, bool):
                return True, value
            word = str(value).lower()
            if word in TRUE_WORDS:
                return True, True
            if word in FALSE_WORDS:
                return True, False
            return False, value

        if rule == "email":
            return bool(isinstance(value, str) and EMAIL_PATTERN.match(value)), value

        if rule == "date":
            if not isinstance(value, str) or not DATE_PATTERN.match(value):
                return False, value
            try:
                date.fromisoformat(value)
            except ValueError:
                return False, value
            return True, value

        if rule == "in":
            options = [option.strip() for option in (argument or "").split(",")]
            return str(value) in options, value

        if rule in ("min", "max"):
            limit = float(argument or 0)
            size = self._size(value, rule_names)
            if size is None:
                return False, value
            return (size >= limit if rule == "min" else size <= limit), value

        return True, value

    @staticmethod
    def _size(value: Any, rule_names: set) -> Optional[float]:
        numeric = "integer" in rule_names or "numeric" in rule_names
        if numeric and isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        if isinstance(value, (str, list, dict)):
            return float(len(value))
        return None

    def _message(self, name: str, rule: str, argument: Optional[str] = None) -> str:
        custom = self.messages.get(f"{name}.{rule}")
        if custom:
            return custom
        label = name.replace("_", " ")
        templates = {
            "required": "The {label} field is required.",
            "string": "The {label} must be a string.",
            "integer": "The {label} must be an integer.",
            "numeric": "The {label} must be a number.",
            "boolean": "The {label} field must be true or false.",
            "email": "The {label} must be a valid email address.",
            "date": "The {label} is not a valid date.",
            "in": "The selected {label} is invalid.",
            "min": "The {label} must be at least {argument}.",
            "max": "The {label} may not be greater than {argument}.",
            "confirmed": "The {label} confirmation does not match.",
        }
        return templates[rule].format(label=label, argument=argument)


def validate(data: Mapping[str, Any], rules: Mapping[str, Union[str, List[str]]]) -> Dict[str, Any]:
    """Shortcut for Validator(rules).validate(data)."""
    return Validator(rules).validate(data)
