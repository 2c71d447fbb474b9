"""
Soot Assistant — Agent tools.

The fixed catalogue of operations the model may call, and the executor
that runs them. Every tool validates its arguments, acts strictly inside
the caller's household and answers with a JSON document: {"ok": true, ...}
on success, {"ok": false, "error": "..."} on any failure. Results carry
formatted dates, amounts and resolved names so the model can confirm an
action without another round trip.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from src.core import tool_args as ta
from src.core.budget import build_monthly_budget, month_key
from src.core.errors import (
    Ambiguous,
    DomainInvariantViolation,
    FeatureUnavailable,
    ToolError,
    ToolValidationError,
)
from src.core.features import FeatureFlags
from src.core.formatting import (
    euros_to_cents,
    format_date,
    format_euro,
    format_human_today,
    format_month,
    parse_iso_date,
    parse_month,
)
from src.core.important_dates import next_occurrence, upcoming
from src.core.resolver import resolve, resolve_member, resolve_optional
from src.data.db import HouseholdDB
from src.data.models import (
    BudgetEntry,
    BudgetEntryType,
    BudgetRecurringEntry,
    Equipment,
    ImportantDate,
    ImportantDateType,
    NamedEntity,
    Project,
    RecurrenceUnit,
    ShoppingListItem,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

RELATION_KINDS = ("zone", "category", "project", "equipment", "animal", "person")


@dataclass(frozen=True)
class ToolContext:
    """Who is calling: the member (created_by) and the household scope."""

    user_id: int
    house_id: int


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[ta.ToolArgs]
    areas: tuple[str, ...] = ()      # data areas a successful call changes

    @property
    def mutating(self) -> bool:
        return bool(self.areas)


TOOL_SPECS: tuple[ToolSpec, ...] = (
    # Read-only
    ToolSpec("get_house_context",
             "Récupère le contexte de la maison: membres, zones, catégories, projets, "
             "équipements, animaux, personnes, listes d'achats, dates importantes à venir.",
             ta.EmptyArgs),
    ToolSpec("get_today_tasks", "Liste les tâches du jour.", ta.TodayTasksArgs),
    ToolSpec("get_tasks_for_day", "Liste les tâches pour une date précise (YYYY-MM-DD).",
             ta.DayTasksArgs),
    ToolSpec("list_tasks", "Liste les tâches avec filtres optionnels.", ta.ListTasksArgs),
    ToolSpec("list_shopping_lists", "Liste les listes d'achats et leurs articles.", ta.EmptyArgs),
    ToolSpec("list_important_dates",
             "Liste les dates importantes (anniversaires, événements) par prochaine occurrence.",
             ta.ListImportantDatesArgs),
    ToolSpec("list_monthly_budget",
             "Récupère le résumé budget d'un mois (revenus, dépenses, solde) et les lignes.",
             ta.ListMonthlyBudgetArgs),
    # Tasks
    ToolSpec("create_task",
             "Crée une tâche et l'assigne éventuellement. Avec recurrenceUnit, crée une "
             "tâche récurrente.",
             ta.CreateTaskArgs, ("tasks",)),
    ToolSpec("update_task",
             "Modifie une tâche (id ou titre). Seuls les champs fournis changent; null retire "
             "une valeur.",
             ta.UpdateTaskArgs, ("tasks",)),
    ToolSpec("update_task_status", "Met à jour le statut d'une tâche.",
             ta.UpdateTaskStatusArgs, ("tasks",)),
    ToolSpec("delete_task", "Supprime une tâche via son id ou son titre.",
             ta.TaskRefArgs, ("tasks",)),
    # Projects & equipment
    ToolSpec("create_project", "Crée un projet.", ta.CreateProjectArgs, ("projects",)),
    ToolSpec("update_project", "Modifie un projet (id ou nom actuel).",
             ta.UpdateProjectArgs, ("projects",)),
    ToolSpec("delete_project", "Supprime un projet (id ou nom).", ta.RefArgs, ("projects", "tasks")),
    ToolSpec("create_equipment", "Crée un équipement.", ta.CreateEquipmentArgs, ("equipment",)),
    ToolSpec("update_equipment", "Modifie un équipement (id ou nom actuel).",
             ta.UpdateEquipmentArgs, ("equipment",)),
    ToolSpec("delete_equipment", "Supprime un équipement (id ou nom).",
             ta.RefArgs, ("equipment", "tasks")),
    # Zones, categories, animals, people
    ToolSpec("create_zone", "Crée une zone.", ta.SimpleNameArgs, ("settings",)),
    ToolSpec("update_zone", "Renomme une zone (id ou nom actuel).",
             ta.UpdateSimpleNameArgs, ("settings",)),
    ToolSpec("delete_zone", "Supprime une zone (id ou nom).", ta.RefArgs, ("settings", "tasks")),
    ToolSpec("create_category", "Crée une catégorie.", ta.SimpleNameArgs, ("settings",)),
    ToolSpec("update_category", "Renomme une catégorie (id ou nom actuel).",
             ta.UpdateSimpleNameArgs, ("settings",)),
    ToolSpec("delete_category", "Supprime une catégorie (id ou nom).",
             ta.RefArgs, ("settings", "tasks")),
    ToolSpec("create_animal", "Crée un animal.", ta.CreateAnimalArgs, ("settings",)),
    ToolSpec("update_animal", "Modifie un animal (id ou nom actuel).",
             ta.UpdateAnimalArgs, ("settings",)),
    ToolSpec("delete_animal", "Supprime un animal (id ou nom).", ta.RefArgs, ("settings", "tasks")),
    ToolSpec("create_person", "Crée une personne.", ta.CreatePersonArgs, ("settings",)),
    ToolSpec("update_person", "Modifie une personne (id ou nom actuel).",
             ta.UpdatePersonArgs, ("settings",)),
    ToolSpec("delete_person", "Supprime une personne (id ou nom).",
             ta.RefArgs, ("settings", "tasks")),
    # Shopping
    ToolSpec("create_shopping_list", "Crée une liste d'achats.",
             ta.CreateShoppingListArgs, ("shopping",)),
    ToolSpec("add_shopping_item", "Ajoute un article dans une liste d'achats.",
             ta.AddShoppingItemArgs, ("shopping",)),
    ToolSpec("toggle_shopping_item", "Coche ou décoche un article d'une liste d'achats.",
             ta.ToggleShoppingItemArgs, ("shopping",)),
    ToolSpec("clear_shopping_list", "Retire tous les articles d'une liste d'achats.",
             ta.ShoppingListRefArgs, ("shopping",)),
    ToolSpec("delete_shopping_list", "Supprime une liste d'achats et ses articles.",
             ta.ShoppingListRefArgs, ("shopping",)),
    ToolSpec("convert_shopping_item_to_expense",
             "Enregistre un article comme dépense du budget et le coche. Sans amount, "
             "utilise le coût estimé.",
             ta.ConvertShoppingItemArgs, ("shopping", "budget")),
    ToolSpec("convert_shopping_list_to_expense",
             "Enregistre toute une liste comme une dépense et coche ses articles. Sans "
             "amount, utilise la somme des coûts estimés.",
             ta.ConvertShoppingListArgs, ("shopping", "budget")),
    # Budget
    ToolSpec("create_budget_entry",
             "Ajoute une dépense ou un revenu ponctuel dans le budget mensuel.",
             ta.CreateBudgetEntryArgs, ("budget",)),
    ToolSpec("delete_budget_entry", "Supprime une ligne du budget (id ou libellé).",
             ta.BudgetRefArgs, ("budget",)),
    ToolSpec("create_budget_recurring_entry",
             "Ajoute une règle de dépense/revenu récurrent mensuel dans le budget.",
             ta.CreateBudgetRecurringEntryArgs, ("budget",)),
    ToolSpec("update_budget_recurring_entry",
             "Modifie une règle budgétaire récurrente (id ou libellé actuel).",
             ta.UpdateBudgetRecurringEntryArgs, ("budget",)),
    ToolSpec("delete_budget_recurring_entry",
             "Supprime une règle budgétaire récurrente (id ou libellé).",
             ta.BudgetRefArgs, ("budget",)),
    # Important dates
    ToolSpec("create_important_date",
             "Ajoute une date importante (anniversaire, événement...).",
             ta.CreateImportantDateArgs, ("calendar",)),
    ToolSpec("update_important_date", "Modifie une date importante (id ou titre actuel).",
             ta.UpdateImportantDateArgs, ("calendar",)),
    ToolSpec("delete_important_date", "Supprime une date importante (id ou titre).",
             ta.ImportantDateRefArgs, ("calendar",)),
)


def function_tools() -> list[dict[str, Any]]:
    """The catalogue in OpenAI function-tool format."""
    return [
        {
            "type": "function",
            "name": spec.name,
            "description": spec.description,
            "parameters": ta.json_schema(spec.args_model),
        }
        for spec in TOOL_SPECS
    ]


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

_MESSAGES: dict[str, tuple[str, str, str]] = {
    "task": ("Tâche créée", "Tâche mise à jour", "Tâche supprimée"),
    "project": ("Projet créé", "Projet mis à jour", "Projet supprimé"),
    "equipment": ("Équipement créé", "Équipement mis à jour", "Équipement supprimé"),
    "zone": ("Zone créée", "Zone mise à jour", "Zone supprimée"),
    "category": ("Catégorie créée", "Catégorie mise à jour", "Catégorie supprimée"),
    "animal": ("Animal créé", "Animal mis à jour", "Animal supprimé"),
    "person": ("Personne créée", "Personne mise à jour", "Personne supprimée"),
    "important_date": (
        "Date importante créée", "Date importante mise à jour", "Date importante supprimée",
    ),
}

# Model-facing argument -> column. Arguments listed in _REQUIRED cannot be nulled.
_COLUMNS = {
    "title": "title", "name": "name", "description": "description",
    "dueDate": "due_date", "reminderOffsetDays": "reminder_offset_days",
    "startsAt": "starts_at", "endsAt": "ends_at",
    "location": "location", "category": "category",
    "purchasedAt": "purchased_at", "installedAt": "installed_at",
    "lifespanMonths": "lifespan_months",
    "species": "species", "relation": "relation",
    "type": "type", "label": "label", "amount": "amount_cents",
    "dayOfMonth": "day_of_month", "startMonth": "start_month", "endMonth": "end_month",
    "notes": "notes", "date": "date", "isRecurringYearly": "is_recurring_yearly",
}
_DATE_ARGS = {"dueDate", "startsAt", "endsAt", "purchasedAt", "installedAt", "date"}
_REQUIRED = {"title", "name", "type", "label", "amount", "startMonth", "date", "isRecurringYearly"}


def _result(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _optional_date(value: str | None) -> str | None:
    return format_date(value) if value else None


def _project_payload(project: Project) -> dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "startsAt": _optional_date(project.starts_at),
        "endsAt": _optional_date(project.ends_at),
    }


def _equipment_payload(equipment: Equipment) -> dict[str, Any]:
    return {
        "id": equipment.id,
        "name": equipment.name,
        "location": equipment.location,
        "category": equipment.category,
        "purchasedAt": _optional_date(equipment.purchased_at),
        "installedAt": _optional_date(equipment.installed_at),
        "lifespanMonths": equipment.lifespan_months,
    }


def _named_payload(kind: str, entity: NamedEntity) -> dict[str, Any]:
    payload: dict[str, Any] = {"id": entity.id, "name": entity.name}
    if kind == "animal":
        payload["species"] = entity.detail
    elif kind == "person":
        payload["relation"] = entity.detail
    return payload


def _item_payload(item: ShoppingListItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "name": item.name,
        "completed": item.completed,
        "estimatedCost": (
            format_euro(item.estimated_cost_cents)
            if item.estimated_cost_cents is not None else None
        ),
    }


def _entry_payload(entry: BudgetEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "type": entry.type.value,
        "source": entry.source.value,
        "label": entry.label,
        "amount": format_euro(entry.amount_cents),
        "occurredOn": format_date(entry.occurred_on),
        "isForecast": entry.is_forecast,
    }


def _rule_payload(rule: BudgetRecurringEntry) -> dict[str, Any]:
    return {
        "id": rule.id,
        "type": rule.type.value,
        "label": rule.label,
        "amount": format_euro(rule.amount_cents),
        "dayOfMonth": rule.day_of_month,
        "startMonth": rule.start_month,
        "endMonth": rule.end_month,
    }


def _important_date_payload(item: ImportantDate, today: date) -> dict[str, Any]:
    occurrence = next_occurrence(date.fromisoformat(item.date), item.is_recurring_yearly, today)
    return {
        "id": item.id,
        "title": item.title,
        "type": item.type.value,
        "date": format_date(item.date),
        "nextOccurrence": format_date(occurrence),
        "recurring": item.is_recurring_yearly,
        "description": item.description,
    }


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

Handler = Callable[[Any, ToolContext], dict[str, Any]]


def _log_change(areas: tuple[str, ...]) -> None:
    logger.debug("Data changed: %s", ", ".join(areas))


def _log_entity_created(kind: str, entity_id: int) -> None:
    logger.debug("Illustration not generated for %s #%d (no generator configured)", kind, entity_id)


class ToolExecutor:
    """Runs catalogue tools against the household store.

    on_change(areas) is called after every successful mutation;
    on_entity_created(kind, id) after a task, project or equipment is created.
    """

    def __init__(
        self,
        db: HouseholdDB,
        features: FeatureFlags,
        on_change: Callable[[tuple[str, ...]], None] | None = None,
        on_entity_created: Callable[[str, int], None] | None = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._db = db
        self._features = features
        self._on_change = on_change or _log_change
        self._on_entity_created = on_entity_created or _log_entity_created
        self._today = clock
        self._specs = {spec.name: spec for spec in TOOL_SPECS}
        self._handlers = self._build_handlers()

        declared, handled = set(self._specs), set(self._handlers)
        if declared != handled:
            raise ValueError(
                f"Tool catalogue mismatch: without handler {sorted(declared - handled)}, "
                f"undeclared {sorted(handled - declared)}"
            )

    @property
    def tool_names(self) -> list[str]:
        return list(self._specs)

    def _build_handlers(self) -> dict[str, Handler]:
        handlers: dict[str, Handler] = {
            "get_house_context": self._get_house_context,
            "get_today_tasks": self._get_today_tasks,
            "get_tasks_for_day": self._get_tasks_for_day,
            "list_tasks": self._list_tasks,
            "list_shopping_lists": self._list_shopping_lists,
            "list_important_dates": self._list_important_dates,
            "list_monthly_budget": self._list_monthly_budget,
            "create_task": self._create_task,
            "update_task": self._update_task,
            "update_task_status": self._update_task_status,
            "delete_task": self._delete_task,
            "create_project": self._create_project,
            "create_equipment": self._create_equipment,
            "create_shopping_list": self._create_shopping_list,
            "add_shopping_item": self._add_shopping_item,
            "toggle_shopping_item": self._toggle_shopping_item,
            "clear_shopping_list": self._clear_shopping_list,
            "delete_shopping_list": self._delete_shopping_list,
            "convert_shopping_item_to_expense": self._convert_item,
            "convert_shopping_list_to_expense": self._convert_list,
            "create_budget_entry": self._create_budget_entry,
            "delete_budget_entry": self._delete_budget_entry,
            "create_budget_recurring_entry": self._create_recurring_entry,
            "update_budget_recurring_entry": self._update_recurring_entry,
            "delete_budget_recurring_entry": self._delete_recurring_entry,
            "create_important_date": self._create_important_date,
            "update_important_date": self._update_important_date,
            "delete_important_date": self._delete_important_date,
        }
        for kind in ("zone", "category", "animal", "person"):
            handlers[f"create_{kind}"] = self._named_creator(kind)
        for kind in ("project", "equipment", "zone", "category", "animal", "person"):
            handlers[f"update_{kind}"] = self._entity_updater(kind)
            handlers[f"delete_{kind}"] = self._entity_deleter(kind)
        return handlers

    async def execute(self, name: str, args: Any, ctx: ToolContext) -> str:
        """Run one tool call and return its JSON result. Never raises."""
        spec = self._specs.get(name)
        if spec is None:
            logger.warning("Unsupported tool requested: %s", name)
            return _result({"ok": False, "error": f"Tool non pris en charge: {name}"})

        try:
            parsed = ta.validate_args(spec.args_model, args)
            payload = self._handlers[name](parsed, ctx)
        except Ambiguous as exc:
            logger.warning("Tool %s ambiguous: %s", name, exc)
            return _result({
                "ok": False,
                "error": str(exc),
                "candidates": [{"id": cid, "name": cname} for cid, cname in exc.candidates],
            })
        except ToolError as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return _result({"ok": False, "error": str(exc)})
        except Exception:
            logger.exception("Unexpected error in tool %s", name)
            return _result({"ok": False, "error": "Erreur inattendue pendant l'exécution du tool"})

        logger.info("Tool %s executed for household #%d", name, ctx.house_id)
        if spec.mutating:
            self._on_change(spec.areas)
        return _result({"ok": True, **payload})

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _require_budget(self) -> None:
        if not self._features.budget:
            raise FeatureUnavailable(
                "Le module budget n'est pas disponible pour l'agent. "
                "Active BUDGET_ENABLED puis redémarre le bot."
            )

    def _changes(self, args: ta.ToolArgs, skip: tuple[str, ...]) -> dict[str, Any]:
        """Columns to update from the arguments the caller actually sent."""
        changes: dict[str, Any] = {}
        for field, value in args.provided().items():
            if field in skip:
                continue
            if value is None and field in _REQUIRED:
                raise ToolValidationError(f"{field}: ne peut pas être vide")
            if field in _DATE_ARGS and value is not None:
                parse_iso_date(value)
            if field == "amount" and value is not None:
                value = euros_to_cents(value)
            elif isinstance(value, bool):
                value = int(value)
            changes[_COLUMNS[field]] = value
        if not changes:
            raise ToolValidationError("Aucune modification fournie.")
        return changes

    def _member_names(self, house_id: int) -> dict[int, str]:
        return {m.id: m.display_name for m in self._db.list_members(house_id)}

    def _task_rows(self, tasks: list[Task], house_id: int) -> list[dict[str, Any]]:
        members = self._member_names(house_id)
        zones = self._db.name_map("zone", house_id)
        categories = self._db.name_map("category", house_id)
        return [
            {
                "id": t.id,
                "title": t.title,
                "status": t.status.value,
                "dueDate": format_date(t.due_date),
                "zone": zones.get(t.zone_id),
                "category": categories.get(t.category_id),
                "assignee": members.get(t.assignee_id),
            }
            for t in tasks
        ]

    def _task_links(self, task: Task) -> dict[str, str]:
        """Resolved names of the records a task points at."""
        links: dict[str, str] = {}
        for kind in RELATION_KINDS:
            ref = getattr(task, f"{kind}_id")
            if ref is not None:
                record = self._db.get_by_id(kind, task.house_id, ref)
                if record is not None:
                    links[kind] = record.name
        if task.assignee_id is not None:
            links["assignee"] = self._member_names(task.house_id).get(task.assignee_id, "")
        return links

    def _task_payload(self, task: Task) -> dict[str, Any]:
        return {
            "id": task.id,
            "title": task.title,
            "status": task.status.value,
            "dueDate": format_date(task.due_date),
            "description": task.description,
            "reminderOffsetDays": task.reminder_offset_days,
            "links": self._task_links(task),
        }

    def _resolve_task(self, args: ta.TaskRefArgs, ctx: ToolContext) -> Task:
        return resolve(self._db, "task", ctx.house_id, args.taskId, args.taskTitle)

    def _resolve_list(self, args: ta.ShoppingListRefArgs, ctx: ToolContext):
        return resolve(
            self._db, "shopping_list", ctx.house_id, args.shoppingListId, args.shoppingListName,
        )

    def _resolve_item(self, args: ta.ShoppingItemRefArgs, ctx: ToolContext) -> ShoppingListItem:
        within = None
        if args.itemId is None:
            shopping_list = resolve_optional(
                self._db, "shopping_list", ctx.house_id,
                args.shoppingListId, args.shoppingListName,
            )
            within = shopping_list.id if shopping_list else None
        return resolve(self._db, "shopping_item", ctx.house_id, args.itemId, args.itemName, within)

    # ------------------------------------------------------------------
    # Read-only tools
    # ------------------------------------------------------------------

    def _get_house_context(self, args: ta.EmptyArgs, ctx: ToolContext) -> dict[str, Any]:
        db, house = self._db, ctx.house_id
        today = self._today()
        members = db.list_members(house)
        dates = upcoming(db.list_all("important_date", house), today)[:20]
        return {
            "data": {
                "today": format_human_today(today),
                "members": [m.display_name or m.email for m in members],
                "zones": sorted(z.name for z in db.list_all("zone", house)),
                "categories": sorted(c.name for c in db.list_all("category", house)),
                "projects": [p.name for p in db.list_all("project", house)],
                "equipments": [e.name for e in db.list_all("equipment", house)],
                "animals": [_named_payload("animal", x) for x in db.list_all("animal", house)],
                "people": [_named_payload("person", x) for x in db.list_all("person", house)],
                "shoppingLists": [
                    {"id": l.id, "name": l.name, "itemsCount": l.items_count}
                    for l in db.list_shopping_lists(house)
                ],
                "importantDates": [
                    {
                        "id": item.id,
                        "title": item.title,
                        "type": item.type.value,
                        "nextOccurrence": format_date(occurrence),
                        "recurring": item.is_recurring_yearly,
                    }
                    for item, occurrence in dates
                ],
                "budgetEnabled": self._features.budget,
            },
        }

    def _day_tasks(self, day: date, include_done: bool, ctx: ToolContext) -> dict[str, Any]:
        tasks = self._db.tasks_for_day(ctx.house_id, day.isoformat(), include_done)
        rows = self._task_rows(tasks, ctx.house_id)
        return {"date": format_date(day), "total": len(rows), "tasks": rows}

    def _get_today_tasks(self, args: ta.TodayTasksArgs, ctx: ToolContext) -> dict[str, Any]:
        return self._day_tasks(self._today(), args.includeDone, ctx)

    def _get_tasks_for_day(self, args: ta.DayTasksArgs, ctx: ToolContext) -> dict[str, Any]:
        return self._day_tasks(parse_iso_date(args.date), args.includeDone, ctx)

    def _list_tasks(self, args: ta.ListTasksArgs, ctx: ToolContext) -> dict[str, Any]:
        for value in (args.dueFrom, args.dueTo):
            if value:
                parse_iso_date(value)
        tasks = self._db.list_tasks(
            ctx.house_id,
            status=TaskStatus(args.status) if args.status else None,
            due_from=args.dueFrom,
            due_to=args.dueTo,
            limit=args.limit,
        )
        rows = self._task_rows(tasks, ctx.house_id)
        return {"total": len(rows), "tasks": rows}

    def _list_shopping_lists(self, args: ta.EmptyArgs, ctx: ToolContext) -> dict[str, Any]:
        lists = self._db.list_shopping_lists(ctx.house_id)
        return {
            "total": len(lists),
            "shoppingLists": [
                {
                    "id": l.id,
                    "name": l.name,
                    "itemsCount": l.items_count,
                    "items": [
                        _item_payload(i)
                        for i in self._db.list_all("shopping_item", ctx.house_id, within=l.id)
                    ],
                }
                for l in lists
            ],
        }

    def _list_important_dates(
        self, args: ta.ListImportantDatesArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        today = self._today()
        items = upcoming(self._db.list_all("important_date", ctx.house_id), today, args.withinDays)
        return {
            "total": len(items),
            "importantDates": [_important_date_payload(item, today) for item, _ in items],
        }

    def _list_monthly_budget(
        self, args: ta.ListMonthlyBudgetArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        self._require_budget()
        month = parse_month(args.month) if args.month else month_key(self._today())
        budget = build_monthly_budget(self._db, ctx.house_id, month)
        return {
            "month": month,
            "monthLabel": format_month(month),
            "summary": {
                "income": format_euro(budget.income_cents),
                "expense": format_euro(budget.expense_cents),
                "balance": format_euro(budget.balance_cents),
            },
            "entries": [
                {
                    "id": line.id,
                    "type": line.type.value,
                    "source": line.source.value,
                    "label": line.label,
                    "amount": format_euro(line.amount_cents),
                    "occurredOn": format_date(line.occurred_on),
                    "isForecast": line.is_forecast,
                    "projected": line.projected,
                }
                for line in budget.lines
            ],
        }

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _create_task(self, args: ta.CreateTaskArgs, ctx: ToolContext) -> dict[str, Any]:
        db, house = self._db, ctx.house_id
        if args.recurrenceInterval is not None and args.recurrenceUnit is None:
            raise ToolValidationError("recurrenceInterval: recurrenceUnit est requis")
        if args.dueDate:
            parse_iso_date(args.dueDate)

        relations = {}
        for kind in RELATION_KINDS:
            record = resolve_optional(db, kind, house, name=getattr(args, kind))
            relations[f"{kind}_id"] = record.id if record else None
        assignee = resolve_member(db, house, args.assignee)

        common = dict(
            description=args.description,
            reminder_offset_days=args.reminderOffsetDays,
            created_by=ctx.user_id,
            assignee_id=assignee.id if assignee else None,
            relations=relations,
        )

        if args.recurrenceUnit:
            interval = args.recurrenceInterval or 1
            due = args.dueDate or self._today().isoformat()
            _, task = db.create_recurring_task(
                house, args.title, RecurrenceUnit(args.recurrenceUnit), interval, due, **common,
            )
            self._on_entity_created("task", task.id)
            return {
                "message": "Tâche récurrente créée",
                "task": self._task_payload(task),
                "recurrence": {"unit": args.recurrenceUnit, "interval": interval},
            }

        task = db.create_task(house, args.title, due_date=args.dueDate, **common)
        self._on_entity_created("task", task.id)
        return {"message": _MESSAGES["task"][0], "task": self._task_payload(task)}

    def _update_task(self, args: ta.UpdateTaskArgs, ctx: ToolContext) -> dict[str, Any]:
        task = self._resolve_task(args, ctx)
        relation_args = {*RELATION_KINDS, "assignee"}
        sent = args.provided()

        changes: dict[str, Any] = {}
        for kind in RELATION_KINDS:
            if kind in sent:
                record = resolve_optional(self._db, kind, ctx.house_id, name=sent[kind])
                changes[f"{kind}_id"] = record.id if record else None
        if "assignee" in sent:
            member = resolve_member(self._db, ctx.house_id, sent["assignee"])
            changes["assignee_id"] = member.id if member else None
        if set(sent) - relation_args - {"taskId", "taskTitle"}:
            changes.update(self._changes(args, skip=("taskId", "taskTitle", *relation_args)))
        if not changes:
            raise ToolValidationError("Aucune modification fournie.")

        updated = self._db.update("task", ctx.house_id, task.id, changes)
        return {"message": _MESSAGES["task"][1], "task": self._task_payload(updated)}

    def _update_task_status(
        self, args: ta.UpdateTaskStatusArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        task = self._resolve_task(args, ctx)
        self._db.update("task", ctx.house_id, task.id, {"status": args.status})
        return {
            "message": "Statut de tâche mis à jour",
            "task": {"id": task.id, "title": task.title, "status": args.status},
        }

    def _delete_task(self, args: ta.TaskRefArgs, ctx: ToolContext) -> dict[str, Any]:
        task = self._resolve_task(args, ctx)
        self._db.delete("task", ctx.house_id, task.id)
        return {"message": _MESSAGES["task"][2], "task": {"id": task.id, "title": task.title}}

    # ------------------------------------------------------------------
    # Projects, equipment and named entities
    # ------------------------------------------------------------------

    def _payload(self, kind: str, record: Any) -> dict[str, Any]:
        if kind == "project":
            return _project_payload(record)
        if kind == "equipment":
            return _equipment_payload(record)
        return _named_payload(kind, record)

    def _create_project(self, args: ta.CreateProjectArgs, ctx: ToolContext) -> dict[str, Any]:
        for value in (args.startsAt, args.endsAt):
            if value:
                parse_iso_date(value)
        project = self._db.create_project(
            ctx.house_id, args.name, args.description, args.startsAt, args.endsAt,
        )
        self._on_entity_created("project", project.id)
        return {"message": _MESSAGES["project"][0], "project": _project_payload(project)}

    def _create_equipment(self, args: ta.CreateEquipmentArgs, ctx: ToolContext) -> dict[str, Any]:
        for value in (args.purchasedAt, args.installedAt):
            if value:
                parse_iso_date(value)
        equipment = self._db.create_equipment(
            ctx.house_id, args.name, args.location, args.category,
            args.purchasedAt, args.installedAt, args.lifespanMonths,
        )
        self._on_entity_created("equipment", equipment.id)
        return {"message": _MESSAGES["equipment"][0], "equipment": _equipment_payload(equipment)}

    def _named_creator(self, kind: str) -> Handler:
        def create(args: Any, ctx: ToolContext) -> dict[str, Any]:
            detail = getattr(args, "species", None) or getattr(args, "relation", None)
            entity = self._db.create_named(kind, ctx.house_id, args.name, detail)
            return {"message": _MESSAGES[kind][0], kind: _named_payload(kind, entity)}
        return create

    def _entity_updater(self, kind: str) -> Handler:
        def update(args: Any, ctx: ToolContext) -> dict[str, Any]:
            record = resolve(self._db, kind, ctx.house_id, args.id, args.currentName)
            changes = self._changes(args, skip=("id", "currentName"))
            updated = self._db.update(kind, ctx.house_id, record.id, changes)
            return {"message": _MESSAGES[kind][1], kind: self._payload(kind, updated)}
        return update

    def _entity_deleter(self, kind: str) -> Handler:
        def delete(args: ta.RefArgs, ctx: ToolContext) -> dict[str, Any]:
            record = resolve(self._db, kind, ctx.house_id, args.id, args.name)
            self._db.delete(kind, ctx.house_id, record.id)
            return {"message": _MESSAGES[kind][2], kind: {"id": record.id, "name": record.name}}
        return delete

    # ------------------------------------------------------------------
    # Shopping
    # ------------------------------------------------------------------

    def _create_shopping_list(
        self, args: ta.CreateShoppingListArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        shopping_list = self._db.create_shopping_list(ctx.house_id, args.name)
        return {
            "message": "Liste d'achats créée",
            "shoppingList": {"id": shopping_list.id, "name": shopping_list.name},
        }

    def _add_shopping_item(self, args: ta.AddShoppingItemArgs, ctx: ToolContext) -> dict[str, Any]:
        shopping_list = self._resolve_list(args, ctx)
        cost = euros_to_cents(args.estimatedCost) if args.estimatedCost is not None else None
        item = self._db.add_shopping_item(ctx.house_id, shopping_list.id, args.itemName, cost)
        return {
            "message": "Article ajouté",
            "shoppingList": {"id": shopping_list.id, "name": shopping_list.name},
            "item": _item_payload(item),
        }

    def _toggle_shopping_item(
        self, args: ta.ToggleShoppingItemArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        item = self._resolve_item(args, ctx)
        completed = (not item.completed) if args.completed is None else args.completed
        updated = self._db.update("shopping_item", ctx.house_id, item.id, {"completed": int(completed)})
        return {
            "message": "Article coché" if completed else "Article décoché",
            "item": _item_payload(updated),
        }

    def _clear_shopping_list(
        self, args: ta.ShoppingListRefArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        shopping_list = self._resolve_list(args, ctx)
        removed = self._db.clear_shopping_list(ctx.house_id, shopping_list.id)
        return {
            "message": "Liste d'achats vidée",
            "shoppingList": {"id": shopping_list.id, "name": shopping_list.name},
            "removedItems": removed,
        }

    def _delete_shopping_list(
        self, args: ta.ShoppingListRefArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        shopping_list = self._resolve_list(args, ctx)
        self._db.delete("shopping_list", ctx.house_id, shopping_list.id)
        return {
            "message": "Liste d'achats supprimée",
            "shoppingList": {"id": shopping_list.id, "name": shopping_list.name},
        }

    def _occurred_on(self, value: str | None) -> str:
        return parse_iso_date(value).isoformat() if value else self._today().isoformat()

    def _convert_item(self, args: ta.ConvertShoppingItemArgs, ctx: ToolContext) -> dict[str, Any]:
        self._require_budget()
        item = self._resolve_item(args, ctx)
        existing = self._db.budget_entry_for_shopping(ctx.house_id, shopping_list_item_id=item.id)
        if existing is not None:
            raise DomainInvariantViolation(
                f"Cet article a déjà été converti en dépense (ligne #{existing.id})."
            )

        if args.amount is not None:
            amount = euros_to_cents(args.amount)
        elif item.estimated_cost_cents is not None:
            amount = item.estimated_cost_cents
        else:
            raise ToolValidationError("amount: montant requis, l'article n'a pas de coût estimé")

        try:
            entry = self._db.convert_item_to_expense(
                ctx.house_id, item, amount, self._occurred_on(args.occurredOn),
                args.notes, ctx.user_id,
            )
        except sqlite3.IntegrityError:
            raise DomainInvariantViolation("Cet article a déjà été converti en dépense.") from None
        return {
            "message": "Article converti en dépense",
            "item": {"id": item.id, "name": item.name, "completed": True},
            "budgetEntry": _entry_payload(entry),
        }

    def _convert_list(self, args: ta.ConvertShoppingListArgs, ctx: ToolContext) -> dict[str, Any]:
        self._require_budget()
        shopping_list = self._resolve_list(args, ctx)
        existing = self._db.budget_entry_for_shopping(ctx.house_id, shopping_list_id=shopping_list.id)
        if existing is not None:
            raise DomainInvariantViolation(
                f"Cette liste a déjà été convertie en dépense (ligne #{existing.id})."
            )

        items = self._db.list_all("shopping_item", ctx.house_id, within=shopping_list.id)
        if args.amount is not None:
            amount = euros_to_cents(args.amount)
        else:
            estimates = [i.estimated_cost_cents for i in items if i.estimated_cost_cents is not None]
            if not estimates:
                raise ToolValidationError("amount: montant requis, aucun coût estimé dans la liste")
            amount = sum(estimates)

        try:
            entry = self._db.convert_list_to_expense(
                ctx.house_id, shopping_list, amount, self._occurred_on(args.occurredOn),
                args.notes, ctx.user_id,
            )
        except sqlite3.IntegrityError:
            raise DomainInvariantViolation("Cette liste a déjà été convertie en dépense.") from None
        return {
            "message": "Liste convertie en dépense",
            "shoppingList": {"id": shopping_list.id, "name": shopping_list.name},
            "completedItems": len(items),
            "budgetEntry": _entry_payload(entry),
        }

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def _create_budget_entry(
        self, args: ta.CreateBudgetEntryArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        self._require_budget()
        entry_type = BudgetEntryType(args.type)
        entry = self._db.create_budget_entry(
            ctx.house_id, entry_type, args.label, euros_to_cents(args.amount),
            self._occurred_on(args.occurredOn),
            is_forecast=args.isForecast,
            notes=args.notes,
            created_by=ctx.user_id,
        )
        return {
            "message": "Revenu ajouté" if entry_type == BudgetEntryType.INCOME else "Dépense ajoutée",
            "budgetEntry": _entry_payload(entry),
        }

    def _delete_budget_entry(self, args: ta.BudgetRefArgs, ctx: ToolContext) -> dict[str, Any]:
        self._require_budget()
        entry = resolve(self._db, "budget_entry", ctx.house_id, args.id, args.label)
        self._db.delete("budget_entry", ctx.house_id, entry.id)
        return {"message": "Ligne de budget supprimée", "budgetEntry": _entry_payload(entry)}

    @staticmethod
    def _check_month_window(start_month: str, end_month: str | None) -> None:
        parse_month(start_month)
        if end_month is not None:
            parse_month(end_month)
            if end_month < start_month:
                raise DomainInvariantViolation(
                    "Le mois de fin doit être postérieur ou égal au mois de début."
                )

    def _create_recurring_entry(
        self, args: ta.CreateBudgetRecurringEntryArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        self._require_budget()
        start = args.startMonth or month_key(self._today())
        self._check_month_window(start, args.endMonth)
        entry_type = BudgetEntryType(args.type)
        rule = self._db.create_recurring_entry(
            ctx.house_id, entry_type, args.label, euros_to_cents(args.amount), start,
            end_month=args.endMonth,
            day_of_month=args.dayOfMonth,
            notes=args.notes,
            created_by=ctx.user_id,
        )
        return {
            "message": (
                "Revenu récurrent ajouté"
                if entry_type == BudgetEntryType.INCOME else "Dépense récurrente ajoutée"
            ),
            "recurringEntry": _rule_payload(rule),
        }

    def _update_recurring_entry(
        self, args: ta.UpdateBudgetRecurringEntryArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        self._require_budget()
        rule = resolve(self._db, "budget_recurring_entry", ctx.house_id, args.id, args.currentLabel)
        changes = self._changes(args, skip=("id", "currentLabel"))
        self._check_month_window(
            changes.get("start_month", rule.start_month),
            changes["end_month"] if "end_month" in changes else rule.end_month,
        )
        updated = self._db.update("budget_recurring_entry", ctx.house_id, rule.id, changes)
        return {"message": "Règle récurrente mise à jour", "recurringEntry": _rule_payload(updated)}

    def _delete_recurring_entry(self, args: ta.BudgetRefArgs, ctx: ToolContext) -> dict[str, Any]:
        self._require_budget()
        rule = resolve(self._db, "budget_recurring_entry", ctx.house_id, args.id, args.label)
        self._db.delete("budget_recurring_entry", ctx.house_id, rule.id)
        return {"message": "Règle récurrente supprimée", "recurringEntry": _rule_payload(rule)}

    # ------------------------------------------------------------------
    # Important dates
    # ------------------------------------------------------------------

    def _create_important_date(
        self, args: ta.CreateImportantDateArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        parse_iso_date(args.date)
        item = self._db.create_important_date(
            ctx.house_id, args.title, args.date, ImportantDateType(args.type),
            args.isRecurringYearly, args.description,
        )
        return {
            "message": _MESSAGES["important_date"][0],
            "importantDate": _important_date_payload(item, self._today()),
        }

    def _update_important_date(
        self, args: ta.UpdateImportantDateArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        item = resolve(self._db, "important_date", ctx.house_id, args.id, args.currentTitle)
        changes = self._changes(args, skip=("id", "currentTitle"))
        updated = self._db.update("important_date", ctx.house_id, item.id, changes)
        return {
            "message": _MESSAGES["important_date"][1],
            "importantDate": _important_date_payload(updated, self._today()),
        }

    def _delete_important_date(
        self, args: ta.ImportantDateRefArgs, ctx: ToolContext,
    ) -> dict[str, Any]:
        item = resolve(self._db, "important_date", ctx.house_id, args.id, args.title)
        self._db.delete("important_date", ctx.house_id, item.id)
        return {
            "message": _MESSAGES["important_date"][2],
            "importantDate": {"id": item.id, "title": item.title},
        }
