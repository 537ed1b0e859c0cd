"""terzi template - {{var}} rendering of saved requests with environment overlays."""

import enum
import logging
import re
from dataclasses import dataclass, field

from terzi.errors import MissingRequiredVariable, UnresolvedVariable
from terzi.request import SavedRequest

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)


class VariableType(enum.Enum):
    """Declared type of a template variable. Descriptive only."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    URL = "url"
    EMAIL = "email"
    JSON = "json"


@dataclass
class TemplateVariable:
    name: str
    description: str | None = None
    default_value: str | None = None
    required: bool = False
    variable_type: VariableType = VariableType.STRING

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "default_value": self.default_value,
            "required": self.required,
            "variable_type": self.variable_type.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TemplateVariable":
        return cls(
            name=data["name"],
            description=data.get("description"),
            default_value=data.get("default_value"),
            required=bool(data.get("required", False)),
            variable_type=VariableType(data.get("variable_type", "string")),
        )


def extract_template_variables(text: str) -> list[str]:
    """Return sorted, de-duplicated {{name}} variable names found in text.

    Scanning stops at the first ``{{`` that has no closing ``}}``.
    Blank names (``{{ }}``) are skipped.
    """
    names: set[str] = set()
    start = 0
    while True:
        open_at = text.find("{{", start)
        if open_at == -1:
            break
        close_at = text.find("}}", open_at + 2)
        if close_at == -1:
            break
        name = text[open_at + 2 : close_at].strip()
        if name:
            names.add(name)
        start = close_at + 2
    return sorted(names)


def substitute(text: str, variables: dict[str, str]) -> str:
    """Replace every literal {{name}} whose name is in variables.

    Single pass: substituted values are never rescanned.
    """

    def _replace(m: re.Match) -> str:
        key = m.group(1)
        if key in variables:
            return str(variables[key])
        return m.group(0)

    return _PLACEHOLDER_RE.sub(_replace, text)


def find_unresolved(text: str) -> str | None:
    """Return the first leftover {{...}} token in text, if any."""
    m = _PLACEHOLDER_RE.search(text)
    return m.group(0) if m else None


@dataclass
class RequestTemplate:
    """A base request plus declared variables and named environments."""

    name: str
    base_request: SavedRequest
    description: str | None = None
    variables: dict[str, TemplateVariable] = field(default_factory=dict)
    environments: dict[str, dict[str, str]] = field(default_factory=dict)

    def add_variable(self, variable: TemplateVariable) -> None:
        self.variables[variable.name] = variable

    def add_environment(self, name: str, variables: dict[str, str]) -> None:
        self.environments[name] = dict(variables)

    def required_variables(self) -> list[str]:
        return sorted(n for n, v in self.variables.items() if v.required)

    def placeholders(self) -> list[str]:
        """Every {{name}} referenced by the base request."""
        req = self.base_request
        texts = [req.url, *req.headers.values()]
        if req.body is not None:
            texts.append(req.body)
        found: set[str] = set()
        for t in texts:
            found.update(extract_template_variables(t))
        return sorted(found)

    def merged_variables(
        self,
        environment: str | None = None,
        variables: dict[str, str] | None = None,
    ) -> dict[str, str]:
        """Environment layer, then explicit overrides, then declared defaults."""
        merged: dict[str, str] = {}
        if environment and environment in self.environments:
            merged.update(self.environments[environment])
        elif environment:
            logger.debug("Template %s has no environment %r", self.name, environment)
        if variables:
            merged.update(variables)

        for var_name, var_def in self.variables.items():
            if var_def.required and var_name not in merged and var_def.default_value is None:
                raise MissingRequiredVariable(var_name)

        for var_name, var_def in self.variables.items():
            if var_name not in merged and var_def.default_value is not None:
                merged[var_name] = var_def.default_value
        return merged

    def render(
        self,
        environment: str | None = None,
        variables: dict[str, str] | None = None,
    ) -> SavedRequest:
        """Render into a fresh SavedRequest. The template is never mutated.

        Raises MissingRequiredVariable when a required variable has neither a
        value nor a default, and UnresolvedVariable for the first {{...}}
        left in the URL, header values or body (in that order).
        """
        merged = self.merged_variables(environment, variables)

        rendered = self.base_request.copy()
        rendered.url = substitute(rendered.url, merged)
        rendered.headers = {k: substitute(v, merged) for k, v in rendered.headers.items()}
        if rendered.body is not None:
            rendered.body = substitute(rendered.body, merged)

        for text in (rendered.url, *rendered.headers.values(), rendered.body or ""):
            token = find_unresolved(text)
            if token is not None:
                raise UnresolvedVariable(token)
        return rendered

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "base_request": self.base_request.to_dict(),
            "variables": {k: v.to_dict() for k, v in self.variables.items()},
            "environments": {k: dict(v) for k, v in self.environments.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RequestTemplate":
        return cls(
            name=data["name"],
            description=data.get("description"),
            base_request=SavedRequest.from_dict(data["base_request"]),
            variables={
                k: TemplateVariable.from_dict(v) for k, v in (data.get("variables") or {}).items()
            },
            environments={k: dict(v) for k, v in (data.get("environments") or {}).items()},
        )
