"""
Lead-qualification executor.

Scores free-text answers to a fixed question set:

    {
        "questions": [{"id": "q1", "text": "¿Cuándo necesitas el servicio?", "weight": 2}, ...],
        "highScoreThreshold": 70,
        "mediumScoreThreshold": 40,
        "positiveKeywords": ["urgente", "pronto"],
        "updateStage": true
    }

An answer counts toward the score when it contains a positive keyword as a
whole word (accents ignored) and does not open with a negation. The score
is the matched share of total question weight, 0-100. Leads at or above the
medium threshold are `qualified`.
"""

import logging
import re
from typing import Any, Mapping

from chatflow.executors.base import Branch, ExecutionResult, config_flag, config_value
from chatflow.executors.condition import normalize_text
from chatflow.services.crm import STAGE_BY_LEVEL, LeadCrmProvider
from chatflow.state.context import ExecutionContext

logger = logging.getLogger(__name__)

DEFAULT_HIGH_THRESHOLD = 70
DEFAULT_MEDIUM_THRESHOLD = 40

DEFAULT_POSITIVE_KEYWORDS = (
    "urgente",
    "urgencia",
    "si",
    "pronto",
    "inmediato",
    "inmediatamente",
    "hoy",
    "ya",
    "interesado",
    "interesada",
    "comprar",
    "presupuesto",
    "definitivamente",
    "claro",
)

NEGATION_PREFIXES = ("no", "nunca", "tampoco", "jamas")

QUALIFIED_MESSAGE = "¡Gracias por tus respuestas! Un asesor se pondrá en contacto contigo muy pronto."
NOT_QUALIFIED_MESSAGE = "¡Gracias por tus respuestas! Te enviaremos más información para que puedas conocernos mejor."
NO_QUESTIONS_MESSAGE = "No fue posible evaluar tus respuestas en este momento."


def _answer_for(question: Mapping[str, Any], context: ExecutionContext) -> str | None:
    question_id = str(question.get("id", ""))
    answers = context.get("answers") or {}
    if isinstance(answers, Mapping) and answers.get(question_id):
        return str(answers[question_id])
    variable = question.get("variableName") or question.get("variable")
    if variable and context.get(variable):
        return str(context.get(variable))
    if question_id and context.get(question_id):
        return str(context.get(question_id))
    return None


def answer_is_positive(answer: str, keywords: list[str]) -> bool:
    normalized = normalize_text(answer)
    if not normalized:
        return False
    if normalized.split()[0] in NEGATION_PREFIXES:
        return False
    return any(
        re.search(rf"\b{re.escape(normalize_text(keyword))}\b", normalized)
        for keyword in keywords
        if normalize_text(keyword)
    )


def score_answers(
    questions: list[Mapping[str, Any]],
    context: ExecutionContext,
    keywords: list[str],
) -> tuple[int, dict[str, bool]]:
    """
    Returns:
        (score 0-100, {question_id: counted})
    """
    total_weight = 0.0
    matched_weight = 0.0
    breakdown: dict[str, bool] = {}

    for question in questions:
        weight = float(question.get("weight", 1) or 0)
        total_weight += weight
        answer = _answer_for(question, context)
        counted = answer is not None and answer_is_positive(answer, keywords)
        breakdown[str(question.get("id", ""))] = counted
        if counted:
            matched_weight += weight

    if total_weight <= 0:
        return 0, breakdown
    return round(100 * matched_weight / total_weight), breakdown


def qualification_level(score: int, high: float, medium: float) -> str:
    if score >= high:
        return "high"
    if score >= medium:
        return "medium"
    return "low"


async def execute_lead_qualification(
    tenant_id: str,
    context: ExecutionContext,
    config: Mapping[str, Any],
    *,
    crm: LeadCrmProvider | None = None,
) -> ExecutionResult:
    questions = [q for q in config.get("questions") or [] if isinstance(q, Mapping)]
    if not questions:
        logger.warning(
            "Lead qualification node has no questions",
            extra={"tenant_id": tenant_id, "node_id": context.current_node_id},
        )
        return ExecutionResult.of(Branch.ERROR, NO_QUESTIONS_MESSAGE, context)

    keywords = list(config_value(config, "positiveKeywords", "positive_keywords",
                                 default=DEFAULT_POSITIVE_KEYWORDS))
    high = float(config_value(config, "highScoreThreshold", "high_score_threshold",
                              default=DEFAULT_HIGH_THRESHOLD))
    medium = float(config_value(config, "mediumScoreThreshold", "medium_score_threshold",
                                default=DEFAULT_MEDIUM_THRESHOLD))

    score, breakdown = score_answers(questions, context, keywords)
    level = qualification_level(score, high, medium)
    qualified = score >= medium

    if crm is not None and config_flag(config, "updateStage", "update_stage"):
        lead_id = context.get("leadId")
        if lead_id:
            await crm.update_lead_stage(tenant_id, str(lead_id), STAGE_BY_LEVEL[level], score)
        else:
            logger.info(
                "Skipping CRM stage update: no leadId in context",
                extra={"tenant_id": tenant_id, "session_id": context.session_id},
            )

    updated = context.merge({
        "leadScore": score,
        "leadQualificationLevel": level,
        "leadQualified": qualified,
        "leadScoreBreakdown": breakdown,
    })

    if qualified:
        message = config_value(config, "qualifiedMessage", default=QUALIFIED_MESSAGE)
        return ExecutionResult.of(Branch.QUALIFIED, updated.render(message), updated)

    message = config_value(config, "notQualifiedMessage", default=NOT_QUALIFIED_MESSAGE)
    return ExecutionResult.of(Branch.NOT_QUALIFIED, updated.render(message), updated)
