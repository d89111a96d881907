"""
Condition / branch executor.

Two authoring shapes are supported:

Options (menu style):
    {"variable": "opcion", "options": ["cita", "info"], "defaultBranch": "otro"}
    Options may also be dicts: {"value": "cita", "label": "Pedir cita", "keywords": ["reservar"]}.
    The discriminant is matched in order by normalized equality, 1-based menu
    number, keyword containment and finally fuzzy similarity (rapidfuzz). The
    matched option value is the branch tag; no match yields `defaultBranch`
    (or "default").

Comparison (legacy):
    {"variable": "edad", "operator": ">=", "value": 18}
    Branch is "true" or "false".
"""

import logging
import re
import unicodedata
from typing import Any, Mapping

from rapidfuzz import fuzz, process

from chatflow.executors.base import Branch, ExecutionResult, config_value
from chatflow.state.context import ExecutionContext

logger = logging.getLogger(__name__)

LAST_USER_MESSAGE = "last_user_message"
SELECTED_OPTION_KEY = "selected_option"
FUZZY_SCORE_CUTOFF = 80


def normalize_text(text: Any) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    folded = unicodedata.normalize("NFKD", str(text))
    folded = "".join(char for char in folded if not unicodedata.combining(char))
    folded = re.sub(r"[^\w\s]", " ", folded.lower())
    return " ".join(folded.split())


def option_value(option: Any) -> str:
    if isinstance(option, Mapping):
        return str(config_value(option, "value", "id", "label", "text", default=""))
    return str(option)


def option_label(option: Any) -> str:
    if isinstance(option, Mapping):
        return str(config_value(option, "label", "text", "value", "id", default=""))
    return str(option)


def match_option(text: Any, options: list[Any]) -> str | None:
    """
    Match free text against configured options.

    Args:
        text: User answer (or any discriminant value)
        options: Option strings or dicts

    Returns:
        Value of the matched option, or None
    """
    if text is None or not options:
        return None
    answer = normalize_text(text)
    if not answer:
        return None

    for option in options:
        if answer in (normalize_text(option_value(option)), normalize_text(option_label(option))):
            return option_value(option)

    if answer.isdigit() and 1 <= int(answer) <= len(options):
        return option_value(options[int(answer) - 1])

    padded = f" {answer} "
    for option in options:
        keywords = option.get("keywords", []) if isinstance(option, Mapping) else []
        for keyword in keywords:
            if f" {normalize_text(keyword)} " in padded:
                return option_value(option)

    labels = [normalize_text(option_label(option)) for option in options]
    best = process.extractOne(answer, labels, scorer=fuzz.WRatio, score_cutoff=FUZZY_SCORE_CUTOFF)
    if best is not None:
        _label, _score, index = best
        return option_value(options[index])

    return None


def _coerce_number(value: Any) -> float | None:
    try:
        return float(str(value).replace(",", "."))
    except (TypeError, ValueError):
        return None


def compare(left: Any, operator: str, right: Any) -> bool:
    """Evaluate a legacy comparison; numeric when both sides are numbers."""
    left_number, right_number = _coerce_number(left), _coerce_number(right)
    if left_number is not None and right_number is not None:
        left, right = left_number, right_number
    else:
        left, right = normalize_text(left if left is not None else ""), normalize_text(right)

    if operator in ("==", "equals", "eq"):
        return left == right
    if operator in ("!=", "not_equals", "ne"):
        return left != right
    if operator == "contains":
        return str(right) in str(left)
    if operator in (">", "gt"):
        return left > right
    if operator in (">=", "gte"):
        return left >= right
    if operator in ("<", "lt"):
        return left < right
    if operator in ("<=", "lte"):
        return left <= right
    raise ValueError(f"Unsupported condition operator '{operator}'")


async def execute_condition(
    tenant_id: str,
    context: ExecutionContext,
    config: Mapping[str, Any],
) -> ExecutionResult:
    variable = config_value(config, "variable", "variableName", default=LAST_USER_MESSAGE)
    value = context.get(variable)

    operator = config.get("operator")
    if operator:
        outcome = compare(value, str(operator), config.get("value"))
        return ExecutionResult.of("true" if outcome else "false", "", context)

    matched = match_option(value, config.get("options") or [])
    if matched is None:
        branch = str(config_value(config, "defaultBranch", "default_branch", default=Branch.DEFAULT))
        logger.debug(f"No option matched '{value}', using branch '{branch}'")
        return ExecutionResult.of(branch, "", context)

    return ExecutionResult.of(matched, "", context.merge({SELECTED_OPTION_KEY: matched}))
