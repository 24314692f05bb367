"""
Template Resolver

Substitutes placeholders in workflow step inputs from the run context.

Grammar: ``{identifier}`` or ``{identifier.field}`` where identifier matches
``[A-Za-z_][A-Za-z0-9_-]*``. Each placeholder is looked up in order:

1. ``{lastResult}``: output of the most recently completed step
2. ``{<step name>}`` / ``{<step name>.<field>}``: a completed step's result.
   Fields: output, success, error, or a key of a JSON-object output.
3. ``{data.<key>}``: a value in the run context's data map
4. anything else is left in the text unchanged

Unresolved placeholders are logged. A strict resolver raises
TemplateResolutionError instead of leaving them in place.
"""

import json
import re
from typing import TYPE_CHECKING, Any

import structlog

from agentweave.core.domain.errors import TemplateResolutionError

if TYPE_CHECKING:
    from agentweave.core.domain.workflow import RunContext, StepResult

PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_-]*)(?:\.([A-Za-z0-9_-]+))?\}")

LAST_RESULT = "lastResult"
DATA = "data"

_MISSING = object()


class TemplateResolver:
    def __init__(self, strict: bool = False):
        self.strict = strict
        self.logger = structlog.get_logger().bind(component="template_resolver")

    def resolve(self, template: str, context: "RunContext") -> str:
        unresolved: list[str] = []

        def substitute(match: re.Match) -> str:
            value = self.lookup(match.group(1), match.group(2), context)
            if value is _MISSING:
                unresolved.append(match.group(0))
                return match.group(0)
            return value

        resolved = PLACEHOLDER.sub(substitute, template)

        if unresolved:
            if self.strict:
                raise TemplateResolutionError(template, unresolved)
            self.logger.warning(
                "template.placeholders.unresolved", placeholders=unresolved
            )
        return resolved

    def unresolved(self, template: str, context: "RunContext") -> list[str]:
        """Placeholders in the template that would be left in place."""
        return [
            m.group(0)
            for m in PLACEHOLDER.finditer(template)
            if self.lookup(m.group(1), m.group(2), context) is _MISSING
        ]

    def lookup(self, identifier: str, field: str | None, context: "RunContext") -> Any:
        """Resolve one placeholder to text, or _MISSING."""
        if identifier == LAST_RESULT:
            if context.last_result is None:
                return _MISSING
            return _step_field(context.last_result, field)

        step = context.step_results.get(identifier)
        if step is not None:
            return _step_field(step, field)

        if identifier == DATA and field is not None and field in context.data:
            return _to_text(context.data[field])

        return _MISSING


def _step_field(step: "StepResult", field: str | None) -> Any:
    if field is None or field == "output":
        return step.output
    if field == "success":
        return "true" if step.success else "false"
    if field == "error":
        return step.error or ""

    try:
        structured = json.loads(step.output)
    except (TypeError, ValueError):
        return _MISSING
    if isinstance(structured, dict) and field in structured:
        return _to_text(structured[field])
    return _MISSING


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)
