"""Turn a classified request into a validated task plan."""

from __future__ import annotations

from typing import Any, Optional

from sitepilot.ai.client import ModelRequest
from sitepilot.ai.conversation import build_prompt
from sitepilot.ai.gateway import ModelGateway
from sitepilot.core.types import Intent, WorkerRole
from sitepilot.errors import ProviderUnavailable
from sitepilot.log import get_logger
from sitepilot.orchestrator import replies
from sitepilot.orchestrator.classifier import ClassificationResult
from sitepilot.orchestrator.keywords import RequestAnalysis
from sitepilot.orchestrator.plan import QualityGate, Task, TaskPlan, action_profile, validate_plan
from sitepilot.storage.models import Message, ProjectContext

logger = get_logger(__name__)

AREA_ROLES = {
    "ui": WorkerRole.FRONTEND,
    "auth": WorkerRole.BACKEND,
    "commerce": WorkerRole.BACKEND,
    "data": WorkerRole.BACKEND,
    "release": WorkerRole.DEPLOYMENT,
}

_DESCRIPTIONS = {
    "create_website": "Create the {project} website",
    "customize_template": "Customize the current template",
    "update_content": "Update the website content",
    "create_component": "Add the {target} section",
    "update_component": "Update the {target} section",
    "update_styling": "Update colors and typography",
    "create_page": "Create a new page",
    "create_auth_system": "Build login and member registration",
    "implement_business_logic": "Build the {target} system",
    "create_api_endpoint": "Create API endpoints",
    "update_database_schema": "Update the database schema",
    "deploy_application": "Deploy the website",
}


def _ui_action(analysis: RequestAnalysis, context: Optional[ProjectContext]) -> tuple[str, str]:
    """Pick the frontend action and its primary target."""
    existing = context is not None and context.has_existing_site
    ui = analysis.targets_in("ui")
    kinds = {m.target.kind for m in ui}

    if analysis.create_verb and "website" in kinds and (analysis.wants_new or not existing):
        return "create_website", "website"
    components = [m for m in ui if m.target.kind == "component"]
    if components:
        creating = analysis.create_verb or (analysis.add_verb and not analysis.edit_verb)
        return ("create_component" if creating else "update_component"), components[0].name
    if "styling" in kinds:
        return "update_styling", "styling"
    if "page" in kinds:
        creating = analysis.create_verb or analysis.add_verb
        return ("create_page" if creating else "update_content"), "page"
    if existing:
        if any(m.name == "template" for m in ui):
            return "customize_template", "template"
        return "update_content", "website"
    return "create_website", "website"


def _area_action(area: str, analysis: RequestAnalysis, context: Optional[ProjectContext]) -> tuple[str, str]:
    match area:
        case "ui":
            return _ui_action(analysis, context)
        case "auth":
            return "create_auth_system", "login"
        case "commerce":
            return "implement_business_logic", "orders"
        case "data":
            names = {m.name for m in analysis.targets_in("data")}
            return ("update_database_schema", "database") if "database" in names else ("create_api_endpoint", "api")
        case "release":
            return "deploy_application", "deployment"
    raise ValueError(f"Unknown capability area: {area}")


class TaskPlanner:
    """Builds plans for each intent.

    Chat replies are written by the model when the gateway is reachable and
    fall back to canned text otherwise.
    """

    def __init__(self, gateway: Optional[ModelGateway] = None):
        self._gateway = gateway

    async def plan(
        self,
        classification: ClassificationResult,
        message: str,
        history: list[Message],
        context: Optional[ProjectContext] = None,
        project_id: Optional[str] = None,
    ) -> TaskPlan:
        analysis = classification.analysis
        intent = classification.intent

        match intent:
            case Intent.CHAT:
                reply = await self._chat_reply(classification, message, history, context)
                plan = TaskPlan(intent=intent, reply=reply, confidence=classification.confidence)
            case Intent.UNCLEAR:
                plan = TaskPlan(
                    intent=intent,
                    reply=replies.text("clarify", analysis.thai),
                    confidence=classification.confidence,
                )
            case Intent.SIMPLE_TASK:
                area = analysis.areas[0] if analysis.areas else "ui"
                tasks = [self._build_task(1, area, analysis, context, project_id)]
                plan = TaskPlan(intent=intent, tasks=tasks, confidence=classification.confidence)
            case Intent.COMPLEX_TASK:
                tasks = self._complex_tasks(analysis, context, project_id)
                plan = TaskPlan(intent=intent, tasks=tasks, confidence=classification.confidence)

        if plan.tasks:
            plan.quality_gates.append(QualityGate("code_review", "Review generated code before release"))
            if intent == Intent.COMPLEX_TASK:
                plan.quality_gates.append(QualityGate("integration_test", "Run integration tests across components"))

        validate_plan(plan.tasks)
        logger.info(
            "plan_created",
            plan_id=plan.id,
            intent=intent.value,
            tasks=[t.action for t in plan.tasks],
            estimated_duration=plan.estimated_total_duration,
        )
        return plan

    def _complex_tasks(
        self,
        analysis: RequestAnalysis,
        context: Optional[ProjectContext],
        project_id: Optional[str],
    ) -> list[Task]:
        areas = list(analysis.areas)
        if "ui" not in areas and (not areas or analysis.create_verb):
            areas.insert(0, "ui")

        tasks = [self._build_task(i, area, analysis, context, project_id) for i, area in enumerate(areas, start=1)]
        build_ids = [t.id for t in tasks if t.role != WorkerRole.DEPLOYMENT]
        for task in tasks:
            if task.role == WorkerRole.DEPLOYMENT:
                task.dependencies = list(build_ids)
        return tasks

    def _build_task(
        self,
        number: int,
        area: str,
        analysis: RequestAnalysis,
        context: Optional[ProjectContext],
        project_id: Optional[str],
    ) -> Task:
        role = AREA_ROLES[area]
        action, target = _area_action(area, analysis, context)
        duration, priority = action_profile(role, action)
        project_type = analysis.project_type or (context.project_type if context else None)

        payload: dict[str, Any] = {
            "user_input": analysis.text,
            "target": target,
            "targets": [m.name for m in analysis.targets_in(area)],
            "project_type": project_type,
            "project_id": project_id,
        }
        if context is not None:
            payload["project_context"] = context.to_dict()

        description = _DESCRIPTIONS[action].format(project=project_type or "new", target=target)
        return Task(
            id=f"task-{number}-{action}",
            role=role,
            action=action,
            payload=payload,
            priority=priority,
            estimated_duration=duration,
            description=description,
        )

    async def _chat_reply(
        self,
        classification: ClassificationResult,
        message: str,
        history: list[Message],
        context: Optional[ProjectContext],
    ) -> str:
        analysis = classification.analysis
        canned = replies.text("greeting" if analysis.is_greeting else "unavailable", analysis.thai)
        if self._gateway is None or classification.degraded:
            return canned

        request = ModelRequest(
            prompt=build_prompt(message, history, context),
            system_prompt=replies.CHAT_SYSTEM_PROMPT,
        )
        try:
            response = await self._gateway.call(request)
        except ProviderUnavailable as e:
            logger.warning("chat_reply_unavailable", error=str(e))
            return canned
        return response.content.strip() or canned
