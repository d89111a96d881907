"""
Execution Context and templating.

ExecutionContext is the per-conversation variable store threaded through
every node executor. It is immutable: executors compute a new context with
merge() and only the interpreter commits it to the session, so a failed
side effect never leaves half-applied keys behind.

Templates use `{{variable_name}}` tokens (dotted paths reach into
structured values, e.g. `{{appointment.time}}`). A token with no bound
variable is left in the output untouched, so a misconfigured flow produces a
visibly broken message instead of a silently incomplete one.
"""

import json
import re
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Mapping

TEMPLATE_TOKEN = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

_MISSING = object()


def _lookup(variables: Mapping[str, Any], name: str) -> Any:
    """Exact key first, then a dotted path into nested mappings/lists."""
    if name in variables:
        return variables[name]
    if "." not in name:
        return _MISSING

    current: Any = variables
    for part in name.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "sí" if value else "no"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


@dataclass(frozen=True)
class ExecutionContext:
    """
    Immutable variable store for one conversation.

    Attributes:
        tenant_id: Tenant owning the conversation
        session_id: Conversation session id
        variables: Insertion-ordered variables (read-only view)
        current_node_id: Node being executed
        hop_count: Node traversals performed in the current turn
    """

    tenant_id: str
    session_id: str
    variables: Mapping[str, Any] = field(default_factory=dict)
    current_node_id: str | None = None
    hop_count: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    def get(self, name: str, default: Any = None) -> Any:
        value = _lookup(self.variables, name)
        return default if value is _MISSING or value is None else value

    def has(self, name: str) -> bool:
        value = _lookup(self.variables, name)
        return value is not _MISSING and value is not None and value != ""

    def merge(self, updates: Mapping[str, Any] | None) -> "ExecutionContext":
        """Last-write-wins merge. Keys are superseded, never removed."""
        if not updates:
            return self
        merged = dict(self.variables)
        merged.update(updates)
        return replace(self, variables=merged)

    def at_node(self, node_id: str) -> "ExecutionContext":
        """Point the context at a node and count the hop."""
        return replace(self, current_node_id=node_id, hop_count=self.hop_count + 1)

    def new_turn(self) -> "ExecutionContext":
        return replace(self, hop_count=0)

    def render(self, template: str | None, extra: Mapping[str, Any] | None = None) -> str:
        """
        Substitute `{{name}}` tokens with bound variables.

        Args:
            template: Text containing tokens
            extra: Additional values visible only to this render call

        Returns:
            Rendered text; unbound tokens are kept verbatim
        """
        if not template:
            return ""
        scope: Mapping[str, Any] = self.variables
        if extra:
            scope = {**self.variables, **extra}

        def substitute(match: re.Match) -> str:
            value = _lookup(scope, match.group(1))
            if value is _MISSING or value is None:
                return match.group(0)
            return _stringify(value)

        return TEMPLATE_TOKEN.sub(substitute, template)

    def render_config(self, config: Any) -> Any:
        """Render every string inside a (nested) node config."""
        if isinstance(config, str):
            return self.render(config)
        if isinstance(config, Mapping):
            return {key: self.render_config(value) for key, value in config.items()}
        if isinstance(config, list):
            return [self.render_config(item) for item in config]
        return config

    def unresolved_tokens(self, text: str) -> list[str]:
        """Token names still present after rendering (for diagnostics)."""
        return TEMPLATE_TOKEN.findall(text or "")

    def to_dict(self) -> dict[str, Any]:
        return dict(self.variables)
