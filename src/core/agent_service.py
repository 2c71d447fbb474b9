"""
Soot Assistant — Agent conversations service.

Everything around a turn: validating and storing the incoming message and
its attachments, the out-of-scope filter, running the turn loop and storing
the reply. The Telegram bot only talks to this module.
"""

from __future__ import annotations

import logging
import re
import unicodedata
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable

from src.config import settings
from src.core.agent import check_api_key, run_agent_turn
from src.core.conversation_title import enqueue_retitle_job, is_default_conversation_title
from src.core.errors import AgentConfigError, MessageRejected
from src.core.features import FeatureFlags
from src.core.tools import ToolContext, ToolExecutor
from src.data.conversation_db import ConversationDB
from src.data.db import HouseholdDB
from src.data.models import Conversation, Member, Message, MessageRole
from src.ports.model_port import ModelPort

logger = logging.getLogger(__name__)

MAX_ATTACHMENTS = 8
MAX_FILE_SIZE_BYTES = 20 * 1024 * 1024
MAX_MESSAGE_LENGTH = 5000

ALLOWED_MIME_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/heic",
    "image/heif",
}

_EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/heic": ".heic",
    "image/heif": ".heif",
}

# Matched against the lowercased, accent-free message.
IN_SCOPE_KEYWORDS = (
    "maison", "domicile", "logement", "appartement", "jardin", "cuisine",
    "salon", "chambre", "bureau", "salle de bain", "garage", "cave", "grenier",
    "balcon", "terrasse", "piscine", "chauffage", "clim", "electricite",
    "plomberie", "fuite", "travaux", "reparation", "entretien", "menage",
    "nettoyage", "courses", "achat", "liste", "budget", "depense", "revenu",
    "facture", "rendez-vous", "calendrier", "tache", "routine", "projet",
    "equipement", "zone", "categorie", "animal", "personne", "famille", "soot",
    "application", "app", "parametre", "reglage", "compte", "connexion", "bug",
    "probleme",
)

OUT_OF_SCOPE_REPLY = (
    "Je suis Soot, l'assistant de maison et de l'app Soot. Je peux aider sur les tâches, "
    "listes d'achats, projets, équipements, budget, zones, personnes/animaux, entretien "
    "ou réglages de l'app. Pour le reste, je ne peux pas répondre. Reformule avec un "
    "besoin lié à la maison ou à l'application."
)

ModelFactory = Callable[[], ModelPort]


@dataclass
class IncomingAttachment:
    """A file received from the user, not yet written to disk."""

    name: str
    mime_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass
class TurnReply:
    user_message: Message
    message: Message
    used_tools: list[str] = field(default_factory=list)


def default_model_factory() -> ModelPort:
    """OpenAI Responses model built from settings. Raises AgentConfigError on a bad key."""
    from src.adapters.openai_responses import OpenAIResponsesModel

    check_api_key(settings.OPENAI_API_KEY)
    return OpenAIResponsesModel(settings.OPENAI_API_KEY, settings.AGENT_MODEL)


# ---------------------------------------------------------------------------
# Scope filter
# ---------------------------------------------------------------------------


def normalize_for_scope_check(message: str) -> str:
    decomposed = unicodedata.normalize("NFD", message.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped).strip()


def is_in_scope(message: str) -> bool:
    """Keyword check; an empty message (attachments only) is in scope."""
    normalized = normalize_for_scope_check(message)
    if not normalized:
        return True
    return any(keyword in normalized for keyword in IN_SCOPE_KEYWORDS)


# ---------------------------------------------------------------------------
# Validation & attachments
# ---------------------------------------------------------------------------


def validate_incoming(text: str, attachments: list[IncomingAttachment]) -> None:
    if len(attachments) > MAX_ATTACHMENTS:
        raise MessageRejected(f"Maximum {MAX_ATTACHMENTS} pièces jointes par message.")

    for attachment in attachments:
        mime_type = attachment.mime_type or "application/octet-stream"
        if mime_type not in ALLOWED_MIME_TYPES and not mime_type.startswith("image/"):
            raise MessageRejected(
                f"Type non supporté pour {attachment.name}. Formats autorisés: images et PDF."
            )
        if attachment.size_bytes > MAX_FILE_SIZE_BYTES:
            raise MessageRejected(f"{attachment.name} dépasse la taille max de 20 Mo.")

    if not text and not attachments:
        raise MessageRejected("Le message est vide.")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise MessageRejected(
            f"Le message est trop long ({MAX_MESSAGE_LENGTH} caractères max)."
        )


def _safe_file_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", name)


def save_attachments(
    attachments_dir: str | Path, conversation_id: int, attachments: list[IncomingAttachment],
) -> list[dict]:
    """Write files under <attachments_dir>/<conversation_id>/.

    Returns rows for ConversationDB.add_message; paths are relative to
    attachments_dir.
    """
    base = Path(attachments_dir) / str(conversation_id)
    base.mkdir(parents=True, exist_ok=True)
    saved = []
    for attachment in attachments:
        mime_type = attachment.mime_type or "application/octet-stream"
        original = Path(attachment.name)
        extension = original.suffix or _EXTENSIONS.get(mime_type, ".bin")
        stamp = int(datetime.now().timestamp() * 1000)
        disk_name = f"{stamp}-{uuid.uuid4().hex}-{_safe_file_name(original.stem)}{extension}"
        (base / disk_name).write_bytes(attachment.data)
        saved.append({
            "name": attachment.name,
            "mime_type": mime_type,
            "size_bytes": attachment.size_bytes,
            "path": f"{conversation_id}/{disk_name}",
        })
    return saved


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class AgentService:
    """Conversations of household members with the agent."""

    def __init__(
        self,
        db: HouseholdDB,
        conversations: ConversationDB,
        features: FeatureFlags,
        executor: ToolExecutor,
        model_factory: ModelFactory = default_model_factory,
        attachments_dir: str | None = None,
        history_limit: int | None = None,
        max_steps: int | None = None,
    ) -> None:
        self._db = db
        self._conversations = conversations
        self._features = features
        self._executor = executor
        self._model_factory = model_factory
        self._attachments_dir = attachments_dir or settings.ATTACHMENTS_DIR
        self._history_limit = history_limit or settings.AGENT_HISTORY_LIMIT
        self._max_steps = max_steps or settings.AGENT_MAX_STEPS

    def _membership(self, telegram_user_id: int) -> Member:
        member = self._db.get_primary_membership(telegram_user_id)
        if member is None:
            raise MessageRejected("Aucun foyer associé à ce compte. Utilise /start.")
        return member

    def _require_conversations(self) -> None:
        if not self._features.conversations:
            raise MessageRejected("Les conversations de l'agent ne sont pas disponibles.")

    # -- Conversation bookkeeping ------------------------------------------

    def start_conversation(self, telegram_user_id: int, title: str | None = None) -> Conversation:
        self._require_conversations()
        member = self._membership(telegram_user_id)
        title = (title or "").strip() or None
        return self._conversations.create_conversation(member.house_id, telegram_user_id, title)

    def list_conversations(self, telegram_user_id: int) -> list[Conversation]:
        self._require_conversations()
        return self._conversations.list_conversations(telegram_user_id)

    def get_conversation(self, conversation_id: int, telegram_user_id: int) -> Conversation:
        self._require_conversations()
        conversation = self._conversations.get_conversation(conversation_id, telegram_user_id)
        if conversation is None:
            raise MessageRejected("Conversation introuvable")
        return conversation

    def rename(self, conversation_id: int, telegram_user_id: int, title: str) -> Conversation:
        title = title.strip()
        if not title:
            raise MessageRejected("Le titre est vide.")
        self.get_conversation(conversation_id, telegram_user_id)
        self._conversations.rename_conversation(conversation_id, telegram_user_id, title[:120])
        return self.get_conversation(conversation_id, telegram_user_id)

    def delete(self, conversation_id: int, telegram_user_id: int) -> None:
        self.get_conversation(conversation_id, telegram_user_id)
        self._conversations.delete_conversation(conversation_id, telegram_user_id)

    # -- Turns -------------------------------------------------------------

    async def send_message(
        self,
        conversation_id: int,
        telegram_user_id: int,
        text: str,
        attachments: list[IncomingAttachment] | None = None,
    ) -> TurnReply:
        """Store the user message, run one agent turn and store the reply.

        Raises MessageRejected for invalid input or an unknown conversation.
        Agent failures never raise: they become the assistant reply.
        """
        text = (text or "").strip()
        attachments = attachments or []
        validate_incoming(text, attachments)

        conversation = self.get_conversation(conversation_id, telegram_user_id)
        member = self._membership(telegram_user_id)
        previous_count = self._conversations.message_count(conversation_id)

        saved = save_attachments(self._attachments_dir, conversation_id, attachments)
        user_message = self._conversations.add_message(
            conversation_id, MessageRole.USER, text, saved,
        )

        if previous_count == 0 and is_default_conversation_title(conversation.title):
            enqueue_retitle_job(
                self._conversations,
                conversation_id,
                telegram_user_id,
                conversation.title,
                text,
                [item["name"] for item in saved],
            )

        self._conversations.touch(conversation_id)
        history = self._conversations.recent_history(conversation_id, self._history_limit)

        used_tools: list[str] = []
        if text and not is_in_scope(text):
            logger.info("Conversation #%d: message out of scope", conversation_id)
            assistant_text = OUT_OF_SCOPE_REPLY
        else:
            context = ToolContext(user_id=member.id, house_id=conversation.house_id)
            try:
                result = await run_agent_turn(
                    history,
                    context,
                    self._model_factory(),
                    self._executor,
                    attachments_dir=self._attachments_dir,
                    max_steps=self._max_steps,
                )
                assistant_text, used_tools = result.assistant_text, result.used_tools
            except AgentConfigError as exc:
                logger.error("Agent turn failed for conversation #%d: %s", conversation_id, exc)
                assistant_text = f"Je n'ai pas pu traiter la demande: {exc}"
            except Exception:
                logger.exception("Unexpected agent failure for conversation #%d", conversation_id)
                assistant_text = "Je n'ai pas pu traiter la demande pour une raison inconnue."

        reply = self._conversations.add_message(conversation_id, MessageRole.ASSISTANT, assistant_text)
        self._conversations.touch(conversation_id)
        return TurnReply(user_message=user_message, message=reply, used_tools=used_tools)
