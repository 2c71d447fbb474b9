"""
Soot Assistant — Data Models.

Every household record persists in SQLite and is owned by exactly one
household. Dates are ISO strings (YYYY-MM-DD), months are YYYY-MM and money
is stored as integer cents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class RecurrenceUnit(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class BudgetEntryType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class BudgetEntrySource(str, Enum):
    MANUAL = "MANUAL"
    DOCUMENT = "DOCUMENT"
    SHOPPING_LIST = "SHOPPING_LIST"
    RECURRING = "RECURRING"


class ImportantDateType(str, Enum):
    BIRTHDAY = "BIRTHDAY"
    ANNIVERSARY = "ANNIVERSARY"
    EVENT = "EVENT"
    OTHER = "OTHER"


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


@dataclass
class Household:
    """The tenant boundary: every other record belongs to one household."""

    id: int
    name: str
    created_at: str = ""


@dataclass
class Member:
    """A Telegram user belonging to a household."""

    id: int
    house_id: int
    telegram_user_id: int
    display_name: str
    email: str | None = None
    created_at: str = ""


@dataclass
class Task:
    """A household task.

    Recurring tasks are stored as a template (is_template=True) plus
    materialized instances pointing at it through parent_id. Templates are
    never returned by day/status queries.
    """

    id: int
    house_id: int
    title: str
    status: TaskStatus = TaskStatus.TODO
    description: str | None = None
    due_date: str | None = None
    reminder_offset_days: int | None = None
    is_template: bool = False
    recurrence_unit: RecurrenceUnit | None = None
    recurrence_interval: int | None = None
    parent_id: int | None = None
    created_by: int | None = None
    assignee_id: int | None = None        # members.id
    zone_id: int | None = None
    category_id: int | None = None
    project_id: int | None = None
    equipment_id: int | None = None
    animal_id: int | None = None
    person_id: int | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Project:
    id: int
    house_id: int
    name: str
    description: str | None = None
    starts_at: str | None = None
    ends_at: str | None = None


@dataclass
class Equipment:
    id: int
    house_id: int
    name: str
    location: str | None = None
    category: str | None = None
    purchased_at: str | None = None
    installed_at: str | None = None
    lifespan_months: int | None = None


@dataclass
class NamedEntity:
    """Zone, category, animal or person: a name plus one optional detail.

    The detail is the species for animals and the relation for people.
    """

    id: int
    house_id: int
    name: str
    detail: str | None = None


@dataclass
class ShoppingList:
    id: int
    house_id: int
    name: str
    items_count: int = 0


@dataclass
class ShoppingListItem:
    id: int
    shopping_list_id: int
    name: str
    completed: bool = False
    estimated_cost_cents: int | None = None


@dataclass
class BudgetEntry:
    id: int
    house_id: int
    type: BudgetEntryType
    source: BudgetEntrySource
    label: str
    amount_cents: int
    occurred_on: str
    is_forecast: bool = False
    notes: str | None = None
    shopping_list_id: int | None = None
    shopping_list_item_id: int | None = None
    recurring_entry_id: int | None = None
    created_by: int | None = None


@dataclass
class BudgetRecurringEntry:
    """Monthly income/expense rule. end_month, when set, is >= start_month."""

    id: int
    house_id: int
    type: BudgetEntryType
    label: str
    amount_cents: int
    start_month: str
    end_month: str | None = None
    day_of_month: int | None = None
    notes: str | None = None
    created_by: int | None = None


@dataclass
class ImportantDate:
    id: int
    house_id: int
    title: str
    type: ImportantDateType
    date: str
    is_recurring_yearly: bool = False
    description: str | None = None


@dataclass
class Attachment:
    id: int
    message_id: int
    name: str
    mime_type: str
    size_bytes: int
    path: str                     # relative to ATTACHMENTS_DIR


@dataclass
class Message:
    id: int
    conversation_id: int
    role: MessageRole
    content: str
    created_at: str = ""
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class Conversation:
    id: int
    house_id: int
    telegram_user_id: int
    title: str
    created_at: str = ""
    updated_at: str = ""
    preview: str = ""
