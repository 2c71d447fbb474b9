"""
Soot Assistant — Tool argument models.

One pydantic model per tool. Field names are the camelCase names the model
sees in the catalogue; the catalogue's JSON schemas are generated from
these classes, so validation and the declared contract cannot drift apart.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.errors import ToolValidationError

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
MONTH_PATTERN = r"^\d{4}-\d{2}$"

DateStr = Annotated[str, Field(pattern=DATE_PATTERN, description="Date YYYY-MM-DD")]
MonthStr = Annotated[str, Field(pattern=MONTH_PATTERN, description="Mois YYYY-MM")]
EntityId = Annotated[int, Field(ge=1)]
Name = Annotated[str, Field(min_length=2, max_length=100)]
LookupName = Annotated[str, Field(min_length=1, max_length=200)]
Description = Annotated[str, Field(max_length=2000)]
RelationName = Annotated[str, Field(max_length=100)]
Euros = Annotated[float, Field(ge=0, le=1_000_000, description="Montant en euros, par ex: 125.5")]

Status = Literal["TODO", "IN_PROGRESS", "DONE"]
EntryType = Literal["INCOME", "EXPENSE"]
Unit = Literal["DAILY", "WEEKLY", "MONTHLY", "YEARLY"]
DateType = Literal["BIRTHDAY", "ANNIVERSARY", "EVENT", "OTHER"]


class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    def provided(self) -> dict[str, Any]:
        """Fields the caller actually sent, explicit nulls included."""
        return {name: getattr(self, name) for name in self.model_fields_set}


# ---------------------------------------------------------------------------
# Read-only
# ---------------------------------------------------------------------------


class EmptyArgs(ToolArgs):
    pass


class TodayTasksArgs(ToolArgs):
    includeDone: bool = False


class DayTasksArgs(ToolArgs):
    date: DateStr
    includeDone: bool = False


class ListTasksArgs(ToolArgs):
    status: Status | None = None
    dueFrom: DateStr | None = None
    dueTo: DateStr | None = None
    limit: int = Field(default=20, ge=1, le=50)


class ListImportantDatesArgs(ToolArgs):
    withinDays: int | None = Field(
        default=None, ge=1, le=366,
        description="Limiter aux dates des N prochains jours",
    )


class ListMonthlyBudgetArgs(ToolArgs):
    month: MonthStr | None = None


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class _TaskFields(ToolArgs):
    description: Description | None = None
    dueDate: DateStr | None = None
    reminderOffsetDays: int | None = Field(default=None, ge=0, le=365)
    assignee: str | None = Field(
        default=None, max_length=200, description="Nom ou email d'un membre",
    )
    zone: RelationName | None = None
    category: RelationName | None = None
    project: RelationName | None = None
    equipment: RelationName | None = None
    animal: RelationName | None = None
    person: RelationName | None = None


class CreateTaskArgs(_TaskFields):
    title: Name
    recurrenceUnit: Unit | None = None
    recurrenceInterval: int | None = Field(default=None, ge=1, le=365)


class TaskRefArgs(ToolArgs):
    taskId: EntityId | None = None
    taskTitle: str | None = Field(default=None, min_length=2, max_length=200)


class UpdateTaskArgs(TaskRefArgs, _TaskFields):
    title: Name | None = None


class UpdateTaskStatusArgs(TaskRefArgs):
    status: Status


# ---------------------------------------------------------------------------
# Projects, equipment, zones, categories, animals, people
# ---------------------------------------------------------------------------


class RefArgs(ToolArgs):
    """Target of a delete: id, or name resolved inside the household."""

    id: EntityId | None = None
    name: LookupName | None = None


class _UpdateRef(ToolArgs):
    id: EntityId | None = None
    currentName: LookupName | None = Field(default=None, description="Nom actuel")


class CreateProjectArgs(ToolArgs):
    name: Name
    description: Description | None = None
    startsAt: DateStr | None = None
    endsAt: DateStr | None = None


class UpdateProjectArgs(_UpdateRef):
    name: Name | None = None
    description: Description | None = None
    startsAt: DateStr | None = None
    endsAt: DateStr | None = None


class CreateEquipmentArgs(ToolArgs):
    name: Name
    location: str | None = Field(default=None, max_length=200)
    category: str | None = Field(default=None, max_length=200)
    purchasedAt: DateStr | None = None
    installedAt: DateStr | None = None
    lifespanMonths: int | None = Field(default=None, ge=1, le=1200)


class UpdateEquipmentArgs(_UpdateRef):
    name: Name | None = None
    location: str | None = Field(default=None, max_length=200)
    category: str | None = Field(default=None, max_length=200)
    purchasedAt: DateStr | None = None
    installedAt: DateStr | None = None
    lifespanMonths: int | None = Field(default=None, ge=1, le=1200)


class SimpleNameArgs(ToolArgs):
    name: Name


class UpdateSimpleNameArgs(_UpdateRef):
    name: Name


class CreateAnimalArgs(ToolArgs):
    name: Name
    species: RelationName | None = None


class UpdateAnimalArgs(_UpdateRef):
    name: Name | None = None
    species: RelationName | None = None


class CreatePersonArgs(ToolArgs):
    name: Name
    relation: RelationName | None = None


class UpdatePersonArgs(_UpdateRef):
    name: Name | None = None
    relation: RelationName | None = None


# ---------------------------------------------------------------------------
# Shopping lists
# ---------------------------------------------------------------------------


class CreateShoppingListArgs(ToolArgs):
    name: Name


class ShoppingListRefArgs(ToolArgs):
    shoppingListId: EntityId | None = None
    shoppingListName: LookupName | None = None


class AddShoppingItemArgs(ShoppingListRefArgs):
    itemName: LookupName
    estimatedCost: Euros | None = None


class ShoppingItemRefArgs(ShoppingListRefArgs):
    """An item by id, or by name (optionally narrowed to one list)."""

    itemId: EntityId | None = None
    itemName: LookupName | None = None


class ToggleShoppingItemArgs(ShoppingItemRefArgs):
    completed: bool | None = Field(
        default=None, description="État voulu; absent pour inverser l'état actuel",
    )


class ConvertShoppingItemArgs(ShoppingItemRefArgs):
    amount: Euros | None = None
    occurredOn: DateStr | None = None
    notes: Description | None = None


class ConvertShoppingListArgs(ShoppingListRefArgs):
    amount: Euros | None = None
    occurredOn: DateStr | None = None
    notes: Description | None = None


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


class CreateBudgetEntryArgs(ToolArgs):
    type: EntryType
    label: LookupName
    amount: Euros
    occurredOn: DateStr | None = None
    isForecast: bool = False
    notes: Description | None = None


class BudgetRefArgs(ToolArgs):
    id: EntityId | None = None
    label: LookupName | None = None


class CreateBudgetRecurringEntryArgs(ToolArgs):
    type: EntryType
    label: LookupName
    amount: Euros
    dayOfMonth: int | None = Field(default=None, ge=1, le=31)
    startMonth: MonthStr | None = None
    endMonth: MonthStr | None = None
    notes: Description | None = None


class UpdateBudgetRecurringEntryArgs(ToolArgs):
    id: EntityId | None = None
    currentLabel: LookupName | None = Field(default=None, description="Libellé actuel")
    type: EntryType | None = None
    label: LookupName | None = None
    amount: Euros | None = None
    dayOfMonth: int | None = Field(default=None, ge=1, le=31)
    startMonth: MonthStr | None = None
    endMonth: MonthStr | None = None
    notes: Description | None = None


# ---------------------------------------------------------------------------
# Important dates
# ---------------------------------------------------------------------------


class CreateImportantDateArgs(ToolArgs):
    title: Name
    date: DateStr
    type: DateType = "OTHER"
    isRecurringYearly: bool = True
    description: Description | None = None


class ImportantDateRefArgs(ToolArgs):
    id: EntityId | None = None
    title: LookupName | None = None


class UpdateImportantDateArgs(ToolArgs):
    id: EntityId | None = None
    currentTitle: LookupName | None = Field(default=None, description="Titre actuel")
    title: Name | None = None
    date: DateStr | None = None
    type: DateType | None = None
    isRecurringYearly: bool | None = None
    description: Description | None = None


# ---------------------------------------------------------------------------
# Validation & schema rendering
# ---------------------------------------------------------------------------


def validate_args(model: type[ToolArgs], raw: Any) -> ToolArgs:
    """Validate raw model-supplied arguments; first issue becomes the message."""
    try:
        return model.model_validate(raw if raw is not None else {})
    except ValidationError as exc:
        issue = exc.errors()[0]
        location = ".".join(str(part) for part in issue["loc"]) or "arguments"
        raise ToolValidationError(f"{location}: {issue['msg']}") from None


def _clean_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Strip pydantic noise: titles, null defaults, Optional[...] unions."""
    if "anyOf" in schema:
        branches = [b for b in schema["anyOf"] if b.get("type") != "null"]
        if len(branches) == 1:
            schema = {**branches[0], **{k: v for k, v in schema.items() if k != "anyOf"}}

    cleaned: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "title" or (key == "default" and value is None):
            continue
        if key == "properties":
            cleaned[key] = {name: _clean_schema(prop) for name, prop in value.items()}
        elif isinstance(value, dict):
            cleaned[key] = _clean_schema(value)
        else:
            cleaned[key] = value
    return cleaned


def json_schema(model: type[ToolArgs]) -> dict[str, Any]:
    """JSON schema of a tool's parameters, as declared to the model."""
    schema = _clean_schema(model.model_json_schema())
    schema.setdefault("properties", {})
    schema["type"] = "object"
    schema["additionalProperties"] = False
    return schema
