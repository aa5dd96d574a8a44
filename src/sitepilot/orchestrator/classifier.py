"""Intent classification: model-backed, with a keyword heuristic for outages."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Optional

from sitepilot.ai.client import ModelRequest
from sitepilot.ai.conversation import build_prompt
from sitepilot.ai.gateway import ModelGateway
from sitepilot.config import ClassifierConfig
from sitepilot.core.types import Intent
from sitepilot.errors import ClassificationFailure, ProviderUnavailable
from sitepilot.log import get_logger
from sitepilot.orchestrator.keywords import RequestAnalysis, analyze
from sitepilot.storage.models import Message, ProjectContext

logger = get_logger(__name__)

CLASSIFIER_SYSTEM_PROMPT = """\
You route requests for a website-building assistant. Users write in Thai or English.

Classify the latest user message into exactly one intent:
- "chat": greetings, small talk, questions about the assistant or about websites in general.
- "simple_task": one concrete change or creation handled by a single specialist
  (for example: edit the navbar, change the colors, add a contact section).
- "complex_task": work spanning several specialists, such as a new website with
  login, ordering or payments, or build-and-deploy requests.
- "unclear": the request cannot be acted on without more detail.

Use the conversation so far and the project context to resolve references like "it" or "that page".

Reply with a single JSON object and nothing else:
{"intent": "<chat|simple_task|complex_task|unclear>", "confidence": <0.0-1.0>, "rationale": "<short reason>"}"""

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class ClassificationResult:
    intent: Intent
    confidence: float
    rationale: str
    source: str  # "model" | "heuristic"
    analysis: RequestAnalysis
    degraded: bool = False  # gateway was unavailable


def parse_classification(content: str) -> tuple[Intent, float, str]:
    """Pull ``(intent, confidence, rationale)`` out of a model reply.

    Tolerates code fences and prose around the JSON object. Raises
    ``ClassificationFailure`` when no usable label can be recovered.
    """
    text = content.strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1)
    match = _JSON_OBJECT.search(text)
    if not match:
        raise ClassificationFailure("No JSON object in classifier reply", {"reply": content[:200]})
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ClassificationFailure("Classifier reply is not valid JSON", {"reply": content[:200]}) from e
    if not isinstance(data, dict):
        raise ClassificationFailure("Classifier reply is not a JSON object", {"reply": content[:200]})

    label = str(data.get("intent", "")).strip().lower().replace("-", "_").replace(" ", "_")
    try:
        intent = Intent(label)
    except ValueError as e:
        raise ClassificationFailure(f"Unknown intent label: {label!r}", {"reply": content[:200]}) from e

    try:
        confidence = float(data.get("confidence"))
    except (TypeError, ValueError) as e:
        raise ClassificationFailure("Confidence is not a number", {"reply": content[:200]}) from e
    if math.isnan(confidence):
        raise ClassificationFailure("Confidence is NaN", {"reply": content[:200]})
    confidence = min(max(confidence, 0.0), 1.0)

    rationale = str(data.get("rationale") or data.get("reason") or "")
    return intent, confidence, rationale


def classify_heuristically(analysis: RequestAnalysis) -> tuple[Intent, float, str]:
    """Deterministic keyword classification."""
    if analysis.is_greeting and not analysis.has_action:
        return Intent.CHAT, 0.9, "greeting"
    if analysis.has_action and len(analysis.areas) > 1:
        return Intent.COMPLEX_TASK, 0.75, f"action across {', '.join(analysis.areas)}"
    if analysis.has_action and analysis.targets:
        return Intent.SIMPLE_TASK, 0.8, f"action on {analysis.targets[0].name}"
    if analysis.is_question:
        return Intent.CHAT, 0.6, "question"
    return Intent.UNCLEAR, 0.3, "no actionable target"


class IntentClassifier:
    def __init__(self, gateway: Optional[ModelGateway], config: ClassifierConfig):
        self._gateway = gateway
        self._config = config

    async def classify(
        self,
        message: str,
        history: list[Message],
        context: Optional[ProjectContext] = None,
    ) -> ClassificationResult:
        analysis = analyze(message)

        if self._gateway is None or not self._config.use_model:
            return self._heuristic(analysis, degraded=False)

        window = history[-self._config.history_window:] if self._config.history_window > 0 else []
        request = ModelRequest(
            prompt=build_prompt(message, window, context),
            system_prompt=CLASSIFIER_SYSTEM_PROMPT,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            json_mode=True,
        )
        try:
            response = await self._gateway.call(request)
        except ProviderUnavailable as e:
            logger.warning("classifier_gateway_unavailable", error=str(e))
            return self._heuristic(analysis, degraded=True)

        try:
            intent, confidence, rationale = parse_classification(response.content)
        except ClassificationFailure as e:
            logger.warning("classification_unparsable", error=str(e))
            return ClassificationResult(Intent.UNCLEAR, 0.0, "unparsable classifier reply", "model", analysis)

        if confidence < self._config.confidence_threshold:
            logger.info("classification_low_confidence", intent=intent.value, confidence=confidence)
            return ClassificationResult(Intent.UNCLEAR, confidence, rationale, "model", analysis)

        logger.info("message_classified", intent=intent.value, confidence=confidence, source="model")
        return ClassificationResult(intent, confidence, rationale, "model", analysis)

    @staticmethod
    def _heuristic(analysis: RequestAnalysis, degraded: bool) -> ClassificationResult:
        intent, confidence, rationale = classify_heuristically(analysis)
        logger.info("message_classified", intent=intent.value, confidence=confidence, source="heuristic")
        return ClassificationResult(intent, confidence, rationale, "heuristic", analysis, degraded=degraded)
