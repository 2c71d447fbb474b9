"""
Soot Assistant — Agent turn loop.

One user message = one turn. The model receives the system prompt, the
conversation history and the tool catalogue, then either answers in plain
text (the turn ends) or asks for tool calls. Calls run one after another,
in the order requested, and their outputs go back as the next input batch,
continuing the same server-side response chain. The model is called at
most max_steps times per turn.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from src.core.errors import AgentConfigError
from src.core.formatting import format_human_today
from src.core.tools import ToolContext, ToolExecutor, function_tools
from src.data.models import Message, MessageRole
from src.ports.model_port import ModelError, ModelPort

logger = logging.getLogger(__name__)

MAX_STEPS = 8
NO_ANSWER_TEXT = "Je n'ai pas réussi à produire une réponse exploitable."
STEP_LIMIT_TEXT = (
    "J'ai atteint la limite d'étapes d'outil. "
    "Reformule la demande en plus court pour que je l'exécute."
)

_RULES = (
    "- Réponds en français.",
    "- Quand une demande implique des données ou une action, utilise les tools plutôt que d'inventer.",
    "- Si l'utilisateur demande aujourd'hui/hier/demain ou une date précise, appelle get_tasks_for_day avec une date ISO.",
    "- Pour une plage de dates, utilise list_tasks avec dueFrom/dueTo.",
    "- Pour créer, modifier ou supprimer une tâche, utilise create_task/update_task/delete_task.",
    "- Pour les projets, équipements, zones, catégories, animaux et personnes, utilise les tools dédiés create_/update_/delete_.",
    "- Pour les listes d'achats (ajouter, cocher, vider, supprimer, convertir en dépense), utilise les tools de listes d'achats.",
    "- Pour un revenu ou une dépense ponctuelle, utilise create_budget_entry; pour une règle mensuelle, create_budget_recurring_entry.",
    "- Pour un récap budget d'un mois, utilise list_monthly_budget.",
    "- Pour les anniversaires et dates importantes, utilise les tools *_important_date.",
    "- Si l'utilisateur se trompe sur la date du jour, corrige en te basant sur la date actuelle fournie.",
    "- Si un tool répond que plusieurs éléments correspondent, demande à l'utilisateur lequel, en citant les candidats.",
    "- Quand une action est faite, confirme explicitement ce qui a été réalisé.",
    "- Prends en compte les pièces jointes (images/PDF) quand elles sont présentes.",
    "- Sois concis et concret.",
)


@dataclass
class AgentRunResult:
    assistant_text: str
    used_tools: list[str] = field(default_factory=list)


def check_api_key(api_key: str) -> None:
    """Placeholder keys (sk-test...) count as missing."""
    if not api_key or api_key.startswith("sk-test"):
        raise AgentConfigError(
            "OPENAI_API_KEY manquante ou invalide. Ajoutez une clé valide dans .env."
        )


def build_system_prompt(now: datetime) -> str:
    return "\n".join([
        "Tu es l'assistant IA de Soot.",
        "Objectif: aider l'utilisateur sur sa maison et exécuter des actions quand il le demande.",
        f"Date actuelle: {format_human_today(now.date())} (ISO: {now.date().isoformat()}).",
        "Règles:",
        *_RULES,
    ])


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """Decode call arguments; anything but a JSON object becomes {}.

    The empty dict then fails schema validation with a precise message.
    """
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Malformed tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _user_content(message: Message, attachments_dir: Path) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = []
    text = message.content.strip()
    if text:
        content.append({"type": "input_text", "text": text})

    for attachment in message.attachments:
        try:
            data = (attachments_dir / attachment.path).read_bytes()
        except OSError as exc:
            logger.warning("Attachment %s unreadable: %s", attachment.path, exc)
            content.append({
                "type": "input_text",
                "text": f"Pièce jointe inaccessible: {attachment.name}",
            })
            continue

        encoded = base64.b64encode(data).decode("ascii")
        if attachment.mime_type.startswith("image/"):
            content.append({
                "type": "input_image",
                "image_url": f"data:{attachment.mime_type};base64,{encoded}",
            })
        elif attachment.mime_type == "application/pdf":
            content.append({
                "type": "input_file",
                "filename": attachment.name,
                "file_data": f"data:application/pdf;base64,{encoded}",
            })

    if not content:
        content.append({"type": "input_text", "text": "(message vide)"})
    return content


def build_model_input(history: list[Message], attachments_dir: str | Path) -> list[dict[str, Any]]:
    """Persisted history -> Responses API input items."""
    attachments_dir = Path(attachments_dir)
    items: list[dict[str, Any]] = []
    for message in history:
        if message.role == MessageRole.ASSISTANT:
            items.append({"role": "assistant", "content": message.content})
        else:
            items.append({"role": "user", "content": _user_content(message, attachments_dir)})
    return items


async def run_agent_turn(
    history: list[Message],
    context: ToolContext,
    model: ModelPort,
    executor: ToolExecutor,
    *,
    attachments_dir: str | Path = ".",
    max_steps: int = MAX_STEPS,
    now: datetime | None = None,
) -> AgentRunResult:
    """Run one turn. Only AgentConfigError escapes; tool failures never do."""
    used_tools: list[str] = []
    tools = function_tools()
    pending: list[dict[str, Any]] = [
        {"role": "system", "content": build_system_prompt(now or datetime.now())},
        *build_model_input(history, attachments_dir),
    ]
    previous_response_id: str | None = None

    for step in range(max_steps):
        try:
            response = await model.respond(pending, tools, previous_response_id)
        except ModelError as exc:
            raise AgentConfigError(str(exc)) from exc

        if not response.tool_calls:
            logger.info("Turn finished after %d step(s), tools: %s", step + 1, used_tools or "-")
            return AgentRunResult(response.text or NO_ANSWER_TEXT, used_tools)

        outputs: list[dict[str, Any]] = []
        for call in response.tool_calls:
            output = await executor.execute(call.name, parse_tool_arguments(call.arguments), context)
            used_tools.append(call.name)
            outputs.append({"type": "function_call_output", "call_id": call.call_id, "output": output})

        previous_response_id = response.response_id or previous_response_id
        pending = outputs

    logger.warning("Turn hit the %d-step limit, tools: %s", max_steps, used_tools)
    return AgentRunResult(STEP_LIMIT_TEXT, used_tools)
