"""
Soot Assistant — Telegram Bot.

Telegram is the only user interface. Each text, voice note, photo or PDF
sent by a member becomes one agent turn in the member's active
conversation; commands manage households and conversations.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import tempfile
from datetime import time as dt_time
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.constants import ChatAction
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.adapters.telegram_notifier import split_message
from src.config import settings
from src.core.agent_service import AgentService, IncomingAttachment
from src.core.errors import MessageRejected

if TYPE_CHECKING:
    from src.data.db import HouseholdDB
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

ACTIVE_CONVERSATION_KEY = "conversation_id"


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _reply(update: Update, text: str) -> None:
    for chunk in split_message(text):
        await update.message.reply_text(chunk)


def _service(context: ContextTypes.DEFAULT_TYPE) -> AgentService:
    return context.bot_data["agent"]


def _db(context: ContextTypes.DEFAULT_TYPE) -> HouseholdDB:
    return context.bot_data["db"]


def _parse_id(args: list[str] | None) -> int | None:
    if not args:
        return None
    try:
        return int(args[0].lstrip("#"))
    except ValueError:
        return None


def _active_conversation_id(
    update: Update, context: ContextTypes.DEFAULT_TYPE,
) -> int:
    """The conversation messages go to; one is started on first use."""
    conversation_id = context.user_data.get(ACTIVE_CONVERSATION_KEY)
    if conversation_id is not None:
        return conversation_id
    conversation = _service(context).start_conversation(update.effective_user.id)
    context.user_data[ACTIVE_CONVERSATION_KEY] = conversation.id
    return conversation.id


async def _run_turn(
    update: Update,
    context: ContextTypes.DEFAULT_TYPE,
    text: str,
    attachments: list[IncomingAttachment] | None = None,
) -> None:
    """Shared logic: forward one user message to the agent and send the reply."""
    user_id = update.effective_user.id
    try:
        await context.bot.send_chat_action(update.effective_chat.id, ChatAction.TYPING)
    except TelegramError as exc:
        logger.debug("Chat action failed: %s", exc)

    try:
        conversation_id = _active_conversation_id(update, context)
        reply = await _service(context).send_message(conversation_id, user_id, text, attachments)
    except MessageRejected as exc:
        if str(exc) == "Conversation introuvable":
            context.user_data.pop(ACTIVE_CONVERSATION_KEY, None)
        await update.message.reply_text(str(exc))
        return

    if reply.used_tools:
        logger.info("User %d turn used tools: %s", user_id, ", ".join(reply.used_tools))
    await _reply(update, reply.message.content)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — create the household on first use, then welcome."""
    user = update.effective_user
    db = _db(context)
    member = db.get_primary_membership(user.id)
    if member is None:
        household = db.create_household(f"Maison de {user.first_name or user.id}")
        db.add_member(household.id, user.id, user.full_name or str(user.id))
        intro = f"Foyer « {household.name} » créé."
    else:
        intro = "Content de te revoir !"

    await update.message.reply_text(
        f"{intro}\n\n"
        "Je suis Soot, l'assistant de ta maison.\n"
        "• Écris-moi ou envoie un message vocal pour gérer tâches, listes d'achats, "
        "projets, équipements, budget et dates importantes\n"
        "• Envoie une photo ou un PDF (facture, notice) avec une légende\n"
        "• /new pour démarrer une nouvelle conversation\n\n"
        "Tape /help pour la liste des commandes."
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "Commandes disponibles :\n"
        "/new [titre] — Nouvelle conversation\n"
        "/conversations — Lister tes conversations\n"
        "/open <id> — Reprendre une conversation\n"
        "/rename <id> <titre> — Renommer une conversation\n"
        "/delete <id> — Supprimer une conversation\n"
        "/addmember <telegram_id> <nom> — Ajouter un membre au foyer\n"
        "/help — Afficher ce message"
    )


@authorized_only
async def cmd_new(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /new [titre] — start a conversation and make it active."""
    title = " ".join(context.args or [])
    try:
        conversation = _service(context).start_conversation(update.effective_user.id, title)
    except MessageRejected as exc:
        await update.message.reply_text(str(exc))
        return
    context.user_data[ACTIVE_CONVERSATION_KEY] = conversation.id
    await update.message.reply_text(f"Nouvelle conversation #{conversation.id} : {conversation.title}")


@authorized_only
async def cmd_conversations(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /conversations — most recent first, active one marked."""
    try:
        conversations = _service(context).list_conversations(update.effective_user.id)
    except MessageRejected as exc:
        await update.message.reply_text(str(exc))
        return

    if not conversations:
        await update.message.reply_text("Aucune conversation. Écris-moi pour en démarrer une.")
        return

    active = context.user_data.get(ACTIVE_CONVERSATION_KEY)
    lines = ["Tes conversations :"]
    for c in conversations[:20]:
        marker = "▶" if c.id == active else "•"
        line = f"{marker} #{c.id} {c.title}"
        if c.preview:
            preview = c.preview if len(c.preview) <= 60 else f"{c.preview[:60].rstrip()}..."
            line += f"\n    {preview}"
        lines.append(line)
    await _reply(update, "\n".join(lines))


@authorized_only
async def cmd_open(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /open <id> — switch the active conversation."""
    conversation_id = _parse_id(context.args)
    if conversation_id is None:
        await update.message.reply_text("Usage : /open <id>\nUtilise /conversations pour voir les ids.")
        return
    try:
        conversation = _service(context).get_conversation(conversation_id, update.effective_user.id)
    except MessageRejected as exc:
        await update.message.reply_text(str(exc))
        return
    context.user_data[ACTIVE_CONVERSATION_KEY] = conversation.id
    await update.message.reply_text(f"Conversation #{conversation.id} : {conversation.title}")


@authorized_only
async def cmd_rename(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /rename <id> <titre>."""
    conversation_id = _parse_id(context.args)
    title = " ".join((context.args or [])[1:])
    if conversation_id is None or not title.strip():
        await update.message.reply_text("Usage : /rename <id> <titre>")
        return
    try:
        conversation = _service(context).rename(conversation_id, update.effective_user.id, title)
    except MessageRejected as exc:
        await update.message.reply_text(str(exc))
        return
    await update.message.reply_text(f"Conversation #{conversation.id} renommée : {conversation.title}")


@authorized_only
async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delete <id>."""
    conversation_id = _parse_id(context.args)
    if conversation_id is None:
        await update.message.reply_text("Usage : /delete <id>")
        return
    try:
        _service(context).delete(conversation_id, update.effective_user.id)
    except MessageRejected as exc:
        await update.message.reply_text(str(exc))
        return
    if context.user_data.get(ACTIVE_CONVERSATION_KEY) == conversation_id:
        context.user_data.pop(ACTIVE_CONVERSATION_KEY, None)
    await update.message.reply_text(f"Conversation #{conversation_id} supprimée.")


@authorized_only
async def cmd_addmember(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addmember <telegram_id> <nom> — share the caller's household."""
    new_user_id = _parse_id(context.args)
    name = " ".join((context.args or [])[1:]).strip()
    if new_user_id is None or not name:
        await update.message.reply_text("Usage : /addmember <telegram_id> <nom>")
        return

    db = _db(context)
    member = db.get_primary_membership(update.effective_user.id)
    if member is None:
        await update.message.reply_text("Aucun foyer associé à ce compte. Utilise /start.")
        return
    if any(m.telegram_user_id == new_user_id for m in db.list_members(member.house_id)):
        await update.message.reply_text(f"{name} fait déjà partie du foyer.")
        return

    db.add_member(member.house_id, new_user_id, name)
    await update.message.reply_text(
        f"{name} a rejoint le foyer. Pense à ajouter son id à ALLOWED_USER_IDS."
    )


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — one agent turn."""
    await _run_turn(update, context, update.message.text)


@authorized_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice messages — transcribe via Whisper, then one agent turn."""
    from src.core.transcriber import transcribe_audio

    voice = update.message.voice
    tmp_path: str | None = None

    try:
        voice_file = await context.bot.get_file(voice.file_id)
        with tempfile.NamedTemporaryFile(suffix=".ogg", delete=False) as tmp:
            tmp_path = tmp.name
        await voice_file.download_to_drive(tmp_path)
        text = await transcribe_audio(tmp_path)
        logger.info("Voice transcribed: %s", text[:80])
    except Exception as exc:
        logger.error("Voice handling error: %s", exc)
        await update.message.reply_text(
            "Désolé, je n'ai pas pu traiter ton message vocal. Réessaie ou écris-moi."
        )
        return
    finally:
        if tmp_path:
            Path(tmp_path).unlink(missing_ok=True)

    await update.message.reply_text(f"🎤 J'ai entendu : {text}")
    await _run_turn(update, context, text)


@authorized_only
async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle photos — the largest size is sent to the agent with the caption."""
    photo = update.message.photo[-1]
    telegram_file = await context.bot.get_file(photo.file_id)
    data = bytes(await telegram_file.download_as_bytearray())
    attachment = IncomingAttachment(name=f"photo-{photo.file_unique_id}.jpg", mime_type="image/jpeg", data=data)
    await _run_turn(update, context, update.message.caption or "", [attachment])


@authorized_only
async def handle_document(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle documents — images and PDF go to the agent, the rest is refused."""
    document = update.message.document
    name = document.file_name or f"document-{document.file_unique_id}"
    mime_type = document.mime_type or "application/octet-stream"
    if document.file_size and document.file_size > 20 * 1024 * 1024:
        await update.message.reply_text(f"{name} dépasse la taille max de 20 Mo.")
        return

    telegram_file = await context.bot.get_file(document.file_id)
    data = bytes(await telegram_file.download_as_bytearray())
    attachment = IncomingAttachment(name=name, mime_type=mime_type, data=data)
    await _run_turn(update, context, update.message.caption or "", [attachment])


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_agent_service(db: HouseholdDB) -> AgentService:
    """Wire the default stores, executor and model factory."""
    from src.core.features import FeatureFlags
    from src.core.tools import ToolExecutor
    from src.data.conversation_db import ConversationDB

    # Conversation tables must exist before detection.
    conversations = ConversationDB(db.db_path)
    features = FeatureFlags.detect(db)
    executor = ToolExecutor(db, features)
    return AgentService(db, conversations, features, executor)


def build_app(
    db: HouseholdDB | None = None,
    agent: AgentService | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        db: Household store. Defaults to HouseholdDB() on DATABASE_PATH.
        agent: Conversation service. Defaults to one built on db.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if db is None:
        from src.data.db import HouseholdDB
        db = HouseholdDB()

    if agent is None:
        agent = build_agent_service(db)

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    app.bot_data["db"] = db
    app.bot_data["agent"] = agent
    app.bot_data["notifier"] = notifier

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("new", cmd_new))
    app.add_handler(CommandHandler("conversations", cmd_conversations))
    app.add_handler(CommandHandler("open", cmd_open))
    app.add_handler(CommandHandler("rename", cmd_rename))
    app.add_handler(CommandHandler("delete", cmd_delete))
    app.add_handler(CommandHandler("addmember", cmd_addmember))

    # Messages
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))
    app.add_handler(MessageHandler(filters.PHOTO, handle_photo))
    app.add_handler(MessageHandler(filters.Document.ALL, handle_document))

    # Daily jobs
    _setup_daily_jobs(app, db, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_daily_jobs(
    app: Application,
    db: HouseholdDB,
    notifier: NotificationPort,
) -> None:
    """Register recurring task materialization + morning briefing."""
    from src.core.scheduler import run_daily_jobs

    tz = ZoneInfo(settings.TIMEZONE)
    briefing_time = dt_time(hour=settings.MORNING_BRIEFING_HOUR, minute=0, tzinfo=tz)

    async def _daily_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await run_daily_jobs(db, notifier)

    app.job_queue.run_daily(
        _daily_job_callback,
        time=briefing_time,
        name="daily_jobs",
    )

    logger.info(
        "Daily jobs scheduled at %02d:00 %s",
        settings.MORNING_BRIEFING_HOUR,
        settings.TIMEZONE,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Soot Assistant bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
