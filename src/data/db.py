"""
Soot Assistant — Household Database.

All household data persists in SQLite. Every query is scoped by house_id:
nothing in this module reads or writes across household boundaries.
Shopping items have no house_id of their own and are scoped through
their list.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from src.data.models import (
    BudgetEntry,
    BudgetEntrySource,
    BudgetEntryType,
    BudgetRecurringEntry,
    Equipment,
    Household,
    ImportantDate,
    ImportantDateType,
    Member,
    NamedEntity,
    Project,
    RecurrenceUnit,
    ShoppingList,
    ShoppingListItem,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

TASK_RELATION_COLUMNS = (
    "zone_id", "category_id", "project_id", "equipment_id", "animal_id", "person_id",
)

_STATUS_ORDER = "CASE t.status WHEN 'TODO' THEN 0 WHEN 'IN_PROGRESS' THEN 1 ELSE 2 END"


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _casefold(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).casefold()


# ---------------------------------------------------------------------------
# Entity kinds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Kind:
    table: str
    name_column: str
    columns: tuple[str, ...]          # updatable columns
    order_by: str = "t.id"
    where: str = ""                   # extra filter, e.g. exclude templates
    from_clause: str = ""             # defaults to "<table> t"
    house_column: str = "t.house_id"
    within_column: str = ""           # parent scope (items within a list)
    detail_column: str = ""           # NamedEntity.detail source
    touch: bool = False               # maintain updated_at

    @property
    def source(self) -> str:
        return self.from_clause or f"{self.table} t"


KINDS: dict[str, _Kind] = {
    "task": _Kind(
        "tasks", "title",
        ("title", "description", "status", "due_date", "reminder_offset_days",
         "assignee_id", *TASK_RELATION_COLUMNS),
        order_by="t.updated_at DESC, t.id DESC",
        where="t.is_template = 0",
        touch=True,
    ),
    "project": _Kind("projects", "name", ("name", "description", "starts_at", "ends_at")),
    "equipment": _Kind(
        "equipment", "name",
        ("name", "location", "category", "purchased_at", "installed_at", "lifespan_months"),
    ),
    "zone": _Kind("zones", "name", ("name",)),
    "category": _Kind("categories", "name", ("name",)),
    "animal": _Kind("animals", "name", ("name", "species"), detail_column="species"),
    "person": _Kind("people", "name", ("name", "relation"), detail_column="relation"),
    "shopping_list": _Kind("shopping_lists", "name", ("name",)),
    "shopping_item": _Kind(
        "shopping_list_items", "name",
        ("name", "completed", "estimated_cost_cents"),
        from_clause="shopping_list_items t JOIN shopping_lists l ON l.id = t.shopping_list_id",
        house_column="l.house_id",
        within_column="t.shopping_list_id",
    ),
    "budget_entry": _Kind(
        "budget_entries", "label",
        ("type", "label", "amount_cents", "occurred_on", "is_forecast", "notes"),
        order_by="t.occurred_on DESC, t.id DESC",
    ),
    "budget_recurring_entry": _Kind(
        "budget_recurring_entries", "label",
        ("type", "label", "amount_cents", "day_of_month", "start_month", "end_month", "notes"),
    ),
    "important_date": _Kind(
        "important_dates", "title",
        ("title", "type", "date", "is_recurring_yearly", "description"),
        order_by="t.date, t.title",
    ),
}

BUDGET_TABLES = ("budget_entries", "budget_recurring_entries")


# ---------------------------------------------------------------------------
# Row converters
# ---------------------------------------------------------------------------


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        house_id=row["house_id"],
        title=row["title"],
        status=TaskStatus(row["status"]),
        description=row["description"],
        due_date=row["due_date"],
        reminder_offset_days=row["reminder_offset_days"],
        is_template=bool(row["is_template"]),
        recurrence_unit=RecurrenceUnit(row["recurrence_unit"]) if row["recurrence_unit"] else None,
        recurrence_interval=row["recurrence_interval"],
        parent_id=row["parent_id"],
        created_by=row["created_by"],
        assignee_id=row["assignee_id"],
        zone_id=row["zone_id"],
        category_id=row["category_id"],
        project_id=row["project_id"],
        equipment_id=row["equipment_id"],
        animal_id=row["animal_id"],
        person_id=row["person_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        house_id=row["house_id"],
        name=row["name"],
        description=row["description"],
        starts_at=row["starts_at"],
        ends_at=row["ends_at"],
    )


def _row_to_equipment(row: sqlite3.Row) -> Equipment:
    return Equipment(
        id=row["id"],
        house_id=row["house_id"],
        name=row["name"],
        location=row["location"],
        category=row["category"],
        purchased_at=row["purchased_at"],
        installed_at=row["installed_at"],
        lifespan_months=row["lifespan_months"],
    )


def _row_to_shopping_list(row: sqlite3.Row) -> ShoppingList:
    keys = row.keys()
    return ShoppingList(
        id=row["id"],
        house_id=row["house_id"],
        name=row["name"],
        items_count=row["items_count"] if "items_count" in keys else 0,
    )


def _row_to_item(row: sqlite3.Row) -> ShoppingListItem:
    return ShoppingListItem(
        id=row["id"],
        shopping_list_id=row["shopping_list_id"],
        name=row["name"],
        completed=bool(row["completed"]),
        estimated_cost_cents=row["estimated_cost_cents"],
    )


def _row_to_budget_entry(row: sqlite3.Row) -> BudgetEntry:
    return BudgetEntry(
        id=row["id"],
        house_id=row["house_id"],
        type=BudgetEntryType(row["type"]),
        source=BudgetEntrySource(row["source"]),
        label=row["label"],
        amount_cents=row["amount_cents"],
        occurred_on=row["occurred_on"],
        is_forecast=bool(row["is_forecast"]),
        notes=row["notes"],
        shopping_list_id=row["shopping_list_id"],
        shopping_list_item_id=row["shopping_list_item_id"],
        recurring_entry_id=row["recurring_entry_id"],
        created_by=row["created_by"],
    )


def _row_to_recurring_entry(row: sqlite3.Row) -> BudgetRecurringEntry:
    return BudgetRecurringEntry(
        id=row["id"],
        house_id=row["house_id"],
        type=BudgetEntryType(row["type"]),
        label=row["label"],
        amount_cents=row["amount_cents"],
        start_month=row["start_month"],
        end_month=row["end_month"],
        day_of_month=row["day_of_month"],
        notes=row["notes"],
        created_by=row["created_by"],
    )


def _row_to_important_date(row: sqlite3.Row) -> ImportantDate:
    return ImportantDate(
        id=row["id"],
        house_id=row["house_id"],
        title=row["title"],
        type=ImportantDateType(row["type"]),
        date=row["date"],
        is_recurring_yearly=bool(row["is_recurring_yearly"]),
        description=row["description"],
    )


def _row_to_member(row: sqlite3.Row) -> Member:
    return Member(
        id=row["id"],
        house_id=row["house_id"],
        telegram_user_id=row["telegram_user_id"],
        display_name=row["display_name"],
        email=row["email"],
        created_at=row["created_at"],
    )


def _row_converter(kind: str):
    meta = KINDS[kind]
    if kind in ("zone", "category", "animal", "person"):
        def _named(row: sqlite3.Row) -> NamedEntity:
            return NamedEntity(
                id=row["id"],
                house_id=row["house_id"],
                name=row["name"],
                detail=row[meta.detail_column] if meta.detail_column else None,
            )
        return _named
    return {
        "task": _row_to_task,
        "project": _row_to_project,
        "equipment": _row_to_equipment,
        "shopping_list": _row_to_shopping_list,
        "shopping_item": _row_to_item,
        "budget_entry": _row_to_budget_entry,
        "budget_recurring_entry": _row_to_recurring_entry,
        "important_date": _row_to_important_date,
    }[kind]


# ---------------------------------------------------------------------------
# HouseholdDB
# ---------------------------------------------------------------------------


class HouseholdDB:
    """SQLite-backed storage for everything a household owns."""

    def __init__(self, db_path: str | None = None, enable_budget: bool | None = None) -> None:
        if db_path is None or enable_budget is None:
            from src.config import settings
            db_path = db_path or settings.DATABASE_PATH
            enable_budget = settings.BUDGET_ENABLED if enable_budget is None else enable_budget

        self._db_path = db_path
        self._enable_budget = enable_budget
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        # SQLite's lower() only folds ASCII; names are French.
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose statements commit or roll back together."""
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create tables if they don't exist, and migrate schema."""
        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS households (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    name        TEXT    NOT NULL,
                    created_at  TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS members (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id         INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    telegram_user_id INTEGER NOT NULL,
                    display_name     TEXT    NOT NULL,
                    email            TEXT,
                    created_at       TEXT    NOT NULL,
                    UNIQUE (house_id, telegram_user_id)
                );
                CREATE TABLE IF NOT EXISTS zones (
                    id       INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    name     TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS categories (
                    id       INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    name     TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS animals (
                    id       INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    name     TEXT    NOT NULL,
                    species  TEXT
                );
                CREATE TABLE IF NOT EXISTS people (
                    id       INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    name     TEXT    NOT NULL,
                    relation TEXT
                );
                CREATE TABLE IF NOT EXISTS projects (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id    INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    name        TEXT    NOT NULL,
                    description TEXT,
                    starts_at   TEXT,
                    ends_at     TEXT,
                    created_at  TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS equipment (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id        INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    name            TEXT    NOT NULL,
                    location        TEXT,
                    category        TEXT,
                    purchased_at    TEXT,
                    installed_at    TEXT,
                    lifespan_months INTEGER,
                    created_at      TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS tasks (
                    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id             INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    title                TEXT    NOT NULL,
                    description          TEXT,
                    status               TEXT    NOT NULL DEFAULT 'TODO',
                    due_date             TEXT,
                    reminder_offset_days INTEGER,
                    is_template          INTEGER NOT NULL DEFAULT 0,
                    recurrence_unit      TEXT,
                    recurrence_interval  INTEGER,
                    parent_id            INTEGER REFERENCES tasks(id) ON DELETE SET NULL,
                    created_by           INTEGER,
                    assignee_id          INTEGER REFERENCES members(id) ON DELETE SET NULL,
                    zone_id              INTEGER REFERENCES zones(id) ON DELETE SET NULL,
                    category_id          INTEGER REFERENCES categories(id) ON DELETE SET NULL,
                    project_id           INTEGER REFERENCES projects(id) ON DELETE SET NULL,
                    equipment_id         INTEGER REFERENCES equipment(id) ON DELETE SET NULL,
                    animal_id            INTEGER REFERENCES animals(id) ON DELETE SET NULL,
                    person_id            INTEGER REFERENCES people(id) ON DELETE SET NULL,
                    created_at           TEXT    NOT NULL,
                    updated_at           TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS shopping_lists (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id   INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    name       TEXT    NOT NULL,
                    created_at TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS shopping_list_items (
                    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
                    shopping_list_id     INTEGER NOT NULL REFERENCES shopping_lists(id) ON DELETE CASCADE,
                    name                 TEXT    NOT NULL,
                    completed            INTEGER NOT NULL DEFAULT 0,
                    estimated_cost_cents INTEGER,
                    created_at           TEXT    NOT NULL
                );
                CREATE TABLE IF NOT EXISTS important_dates (
                    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
                    house_id            INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                    title               TEXT    NOT NULL,
                    type                TEXT    NOT NULL DEFAULT 'OTHER',
                    date                TEXT    NOT NULL,
                    is_recurring_yearly INTEGER NOT NULL DEFAULT 1,
                    description         TEXT
                );
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(shopping_list_items)").fetchall()
            }
            if "estimated_cost_cents" not in existing_cols:
                conn.execute(
                    "ALTER TABLE shopping_list_items ADD COLUMN estimated_cost_cents INTEGER"
                )
            if self._enable_budget:
                self._init_budget_tables(conn)
        logger.debug("Household tables initialized at %s", self._db_path)

    @staticmethod
    def _init_budget_tables(conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS budget_recurring_entries (
                id           INTEGER PRIMARY KEY AUTOINCREMENT,
                house_id     INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                type         TEXT    NOT NULL,
                label        TEXT    NOT NULL,
                amount_cents INTEGER NOT NULL,
                day_of_month INTEGER,
                start_month  TEXT    NOT NULL,
                end_month    TEXT,
                notes        TEXT,
                created_by   INTEGER,
                created_at   TEXT    NOT NULL
            );
            CREATE TABLE IF NOT EXISTS budget_entries (
                id                    INTEGER PRIMARY KEY AUTOINCREMENT,
                house_id              INTEGER NOT NULL REFERENCES households(id) ON DELETE CASCADE,
                type                  TEXT    NOT NULL,
                source                TEXT    NOT NULL DEFAULT 'MANUAL',
                label                 TEXT    NOT NULL,
                amount_cents          INTEGER NOT NULL,
                occurred_on           TEXT    NOT NULL,
                is_forecast           INTEGER NOT NULL DEFAULT 0,
                notes                 TEXT,
                shopping_list_id      INTEGER UNIQUE REFERENCES shopping_lists(id) ON DELETE SET NULL,
                shopping_list_item_id INTEGER UNIQUE REFERENCES shopping_list_items(id) ON DELETE SET NULL,
                recurring_entry_id    INTEGER REFERENCES budget_recurring_entries(id) ON DELETE SET NULL,
                created_by            INTEGER,
                created_at            TEXT    NOT NULL
            );
        """)

    def existing_tables(self) -> set[str]:
        """Names of the tables currently present in the schema."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        return {row["name"] for row in rows}

    # ------------------------------------------------------------------
    # Generic scoped access
    # ------------------------------------------------------------------

    def _select(self, kind: str, condition: str, params: list, within: int | None = None) -> list:
        meta = KINDS[kind]
        query = f"SELECT t.* FROM {meta.source} WHERE {meta.house_column} = ?"
        if meta.where:
            query += f" AND {meta.where}"
        if condition:
            query += f" AND {condition}"
        if within is not None and meta.within_column:
            query += f" AND {meta.within_column} = ?"
            params = [*params, within]
        query += f" ORDER BY {meta.order_by}"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        convert = _row_converter(kind)
        return [convert(r) for r in rows]

    def get_by_id(self, kind: str, house_id: int, entity_id: int) -> Any | None:
        """Point lookup, scoped to the household."""
        rows = self._select(kind, "t.id = ?", [house_id, entity_id])
        return rows[0] if rows else None

    def find_by_name(
        self,
        kind: str,
        house_id: int,
        name: str,
        exact: bool = True,
        within: int | None = None,
    ) -> list:
        """Case-insensitive lookup by name: exact equality or substring."""
        column = f"t.{KINDS[kind].name_column}"
        needle = name.strip().casefold()
        if exact:
            condition = f"casefold({column}) = ?"
        else:
            condition = f"instr(casefold({column}), ?) > 0"
        return self._select(kind, condition, [house_id, needle], within=within)

    def list_all(self, kind: str, house_id: int, within: int | None = None) -> list:
        return self._select(kind, "", [house_id], within=within)

    def name_map(self, kind: str, house_id: int) -> dict[int, str]:
        """id -> display name for every record of a kind."""
        column = KINDS[kind].name_column
        return {e.id: getattr(e, column) for e in self.list_all(kind, house_id)}

    def update(self, kind: str, house_id: int, entity_id: int, fields: dict[str, Any]) -> Any:
        """Update the given columns of one scoped record and return it."""
        meta = KINDS[kind]
        unknown = set(fields) - set(meta.columns)
        if unknown:
            raise ValueError(f"Unknown {kind} columns: {sorted(unknown)}")

        values = dict(fields)
        if meta.touch:
            values["updated_at"] = _now()
        if values:
            assignments = ", ".join(f"{col} = ?" for col in values)
            params = [*values.values(), entity_id, house_id]
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE {meta.table} SET {assignments} "
                    f"WHERE id = ? AND {self._house_filter(kind)}",
                    params,
                )
        logger.info("%s #%d updated: %s", kind, entity_id, ", ".join(fields) or "-")
        return self.get_by_id(kind, house_id, entity_id)

    def delete(self, kind: str, house_id: int, entity_id: int) -> bool:
        """Permanently delete one scoped record."""
        meta = KINDS[kind]
        with self._connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM {meta.table} WHERE id = ? AND {self._house_filter(kind)}",
                (entity_id, house_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("%s #%d deleted", kind, entity_id)
        return deleted

    @staticmethod
    def _house_filter(kind: str) -> str:
        if kind == "shopping_item":
            return "shopping_list_id IN (SELECT id FROM shopping_lists WHERE house_id = ?)"
        return "house_id = ?"

    @staticmethod
    def _insert(conn: sqlite3.Connection, table: str, values: dict[str, Any]) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        cursor = conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            list(values.values()),
        )
        return cursor.lastrowid

    # ------------------------------------------------------------------
    # Households & members
    # ------------------------------------------------------------------

    def create_household(self, name: str) -> Household:
        now = _now()
        with self._connect() as conn:
            house_id = self._insert(conn, "households", {"name": name, "created_at": now})
        logger.info("Household created: #%d '%s'", house_id, name)
        return Household(id=house_id, name=name, created_at=now)

    def list_households(self) -> list[Household]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM households ORDER BY id").fetchall()
        return [Household(id=r["id"], name=r["name"], created_at=r["created_at"]) for r in rows]

    def add_member(
        self,
        house_id: int,
        telegram_user_id: int,
        display_name: str,
        email: str | None = None,
    ) -> Member:
        now = _now()
        with self._connect() as conn:
            member_id = self._insert(conn, "members", {
                "house_id": house_id,
                "telegram_user_id": telegram_user_id,
                "display_name": display_name,
                "email": email,
                "created_at": now,
            })
        logger.info("Member %d '%s' joined household #%d", telegram_user_id, display_name, house_id)
        return Member(
            id=member_id,
            house_id=house_id,
            telegram_user_id=telegram_user_id,
            display_name=display_name,
            email=email,
            created_at=now,
        )

    def get_primary_membership(self, telegram_user_id: int) -> Member | None:
        """The oldest membership of a user, or None."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM members WHERE telegram_user_id = ? ORDER BY created_at, id LIMIT 1",
                (telegram_user_id,),
            ).fetchone()
        return _row_to_member(row) if row else None

    def list_members(self, house_id: int) -> list[Member]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM members WHERE house_id = ? ORDER BY created_at, id",
                (house_id,),
            ).fetchall()
        return [_row_to_member(r) for r in rows]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _task_values(self, house_id: int, title: str, **fields: Any) -> dict[str, Any]:
        now = _now()
        values: dict[str, Any] = {"house_id": house_id, "title": title}
        values.update({k: v for k, v in fields.items() if v is not None})
        values["created_at"] = now
        values["updated_at"] = now
        return values

    def create_task(
        self,
        house_id: int,
        title: str,
        *,
        description: str | None = None,
        due_date: str | None = None,
        reminder_offset_days: int | None = None,
        created_by: int | None = None,
        assignee_id: int | None = None,
        relations: dict[str, int | None] | None = None,
        parent_id: int | None = None,
    ) -> Task:
        """Insert a concrete (non-template) task."""
        values = self._task_values(
            house_id, title,
            description=description,
            due_date=due_date,
            reminder_offset_days=reminder_offset_days,
            created_by=created_by,
            assignee_id=assignee_id,
            parent_id=parent_id,
            **(relations or {}),
        )
        with self._connect() as conn:
            task_id = self._insert(conn, "tasks", values)
        logger.info("Task created: #%d '%s' due %s", task_id, title, due_date or "-")
        return self.get_by_id("task", house_id, task_id)

    def create_recurring_task(
        self,
        house_id: int,
        title: str,
        unit: RecurrenceUnit,
        interval: int,
        due_date: str,
        *,
        description: str | None = None,
        reminder_offset_days: int | None = None,
        created_by: int | None = None,
        assignee_id: int | None = None,
        relations: dict[str, int | None] | None = None,
    ) -> tuple[Task, Task]:
        """Insert a template plus its first materialized instance, atomically."""
        shared = dict(
            description=description,
            due_date=due_date,
            reminder_offset_days=reminder_offset_days,
            created_by=created_by,
            assignee_id=assignee_id,
            **(relations or {}),
        )
        with self.transaction() as conn:
            template_id = self._insert(conn, "tasks", self._task_values(
                house_id, title,
                is_template=1,
                recurrence_unit=unit.value,
                recurrence_interval=interval,
                **shared,
            ))
            instance_id = self._insert(conn, "tasks", self._task_values(
                house_id, title, parent_id=template_id, **shared,
            ))
        logger.info(
            "Recurring task created: template #%d, instance #%d '%s' every %d %s",
            template_id, instance_id, title, interval, unit.value,
        )
        return self.get_template(house_id, template_id), self.get_by_id("task", house_id, instance_id)

    def get_template(self, house_id: int, template_id: int) -> Task | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ? AND house_id = ? AND is_template = 1",
                (template_id, house_id),
            ).fetchone()
        return _row_to_task(row) if row else None

    def list_recurring_templates(self, house_id: int) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                WHERE house_id = ? AND is_template = 1
                  AND recurrence_unit IS NOT NULL AND due_date IS NOT NULL
                ORDER BY id
                """,
                (house_id,),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def instance_due_dates(self, house_id: int, template_id: int) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT due_date FROM tasks WHERE house_id = ? AND parent_id = ? AND due_date IS NOT NULL",
                (house_id, template_id),
            ).fetchall()
        return {r["due_date"] for r in rows}

    def tasks_for_day(self, house_id: int, day: str, include_done: bool = False) -> list[Task]:
        condition = "t.due_date = ?"
        params: list = [house_id, day]
        if not include_done:
            condition += " AND t.status != 'DONE'"
        return self._ordered_tasks(condition, params, f"{_STATUS_ORDER}, t.title")

    def list_tasks(
        self,
        house_id: int,
        status: TaskStatus | None = None,
        due_from: str | None = None,
        due_to: str | None = None,
        limit: int = 20,
    ) -> list[Task]:
        conditions = ["1 = 1"]
        params: list = [house_id]
        if status is not None:
            conditions.append("t.status = ?")
            params.append(status.value)
        if due_from:
            conditions.append("t.due_date >= ?")
            params.append(due_from)
        if due_to:
            conditions.append("t.due_date <= ?")
            params.append(due_to)
        return self._ordered_tasks(
            " AND ".join(conditions), params,
            f"{_STATUS_ORDER}, t.due_date IS NULL, t.due_date, t.created_at DESC",
            limit=limit,
        )

    def _ordered_tasks(
        self, condition: str, params: list, order_by: str, limit: int | None = None,
    ) -> list[Task]:
        query = (
            "SELECT t.* FROM tasks t WHERE t.house_id = ? AND t.is_template = 0 "
            f"AND {condition} ORDER BY {order_by}"
        )
        if limit is not None:
            query += " LIMIT ?"
            params = [*params, limit]
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_task(r) for r in rows]

    # ------------------------------------------------------------------
    # Projects, equipment, named entities
    # ------------------------------------------------------------------

    def create_project(
        self,
        house_id: int,
        name: str,
        description: str | None = None,
        starts_at: str | None = None,
        ends_at: str | None = None,
    ) -> Project:
        with self._connect() as conn:
            project_id = self._insert(conn, "projects", {
                "house_id": house_id, "name": name, "description": description,
                "starts_at": starts_at, "ends_at": ends_at, "created_at": _now(),
            })
        logger.info("Project created: #%d '%s'", project_id, name)
        return Project(project_id, house_id, name, description, starts_at, ends_at)

    def create_equipment(
        self,
        house_id: int,
        name: str,
        location: str | None = None,
        category: str | None = None,
        purchased_at: str | None = None,
        installed_at: str | None = None,
        lifespan_months: int | None = None,
    ) -> Equipment:
        with self._connect() as conn:
            equipment_id = self._insert(conn, "equipment", {
                "house_id": house_id, "name": name, "location": location,
                "category": category, "purchased_at": purchased_at,
                "installed_at": installed_at, "lifespan_months": lifespan_months,
                "created_at": _now(),
            })
        logger.info("Equipment created: #%d '%s'", equipment_id, name)
        return Equipment(
            equipment_id, house_id, name, location, category,
            purchased_at, installed_at, lifespan_months,
        )

    def create_named(
        self, kind: str, house_id: int, name: str, detail: str | None = None,
    ) -> NamedEntity:
        """Create a zone, category, animal or person."""
        meta = KINDS[kind]
        values: dict[str, Any] = {"house_id": house_id, "name": name}
        if meta.detail_column:
            values[meta.detail_column] = detail
        with self._connect() as conn:
            entity_id = self._insert(conn, meta.table, values)
        logger.info("%s created: #%d '%s'", kind, entity_id, name)
        return NamedEntity(entity_id, house_id, name, detail if meta.detail_column else None)

    # ------------------------------------------------------------------
    # Shopping lists
    # ------------------------------------------------------------------

    def create_shopping_list(self, house_id: int, name: str) -> ShoppingList:
        with self._connect() as conn:
            list_id = self._insert(conn, "shopping_lists", {
                "house_id": house_id, "name": name, "created_at": _now(),
            })
        logger.info("Shopping list created: #%d '%s'", list_id, name)
        return ShoppingList(id=list_id, house_id=house_id, name=name)

    def list_shopping_lists(self, house_id: int) -> list[ShoppingList]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT l.*, COUNT(i.id) AS items_count
                FROM shopping_lists l
                LEFT JOIN shopping_list_items i ON i.shopping_list_id = l.id
                WHERE l.house_id = ?
                GROUP BY l.id
                ORDER BY l.created_at DESC, l.id DESC
                """,
                (house_id,),
            ).fetchall()
        return [_row_to_shopping_list(r) for r in rows]

    def add_shopping_item(
        self,
        house_id: int,
        shopping_list_id: int,
        name: str,
        estimated_cost_cents: int | None = None,
    ) -> ShoppingListItem:
        if self.get_by_id("shopping_list", house_id, shopping_list_id) is None:
            raise ValueError(f"Shopping list {shopping_list_id} not found")
        with self._connect() as conn:
            item_id = self._insert(conn, "shopping_list_items", {
                "shopping_list_id": shopping_list_id, "name": name,
                "estimated_cost_cents": estimated_cost_cents, "created_at": _now(),
            })
        logger.info("Item #%d '%s' added to list #%d", item_id, name, shopping_list_id)
        return ShoppingListItem(
            id=item_id, shopping_list_id=shopping_list_id, name=name,
            estimated_cost_cents=estimated_cost_cents,
        )

    def clear_shopping_list(self, house_id: int, shopping_list_id: int) -> int:
        """Delete every item of a list. Returns the number of removed items."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                DELETE FROM shopping_list_items
                WHERE shopping_list_id = ?
                  AND shopping_list_id IN (SELECT id FROM shopping_lists WHERE house_id = ?)
                """,
                (shopping_list_id, house_id),
            )
        logger.info("Shopping list #%d cleared (%d items)", shopping_list_id, cursor.rowcount)
        return cursor.rowcount

    def convert_item_to_expense(
        self,
        house_id: int,
        item: ShoppingListItem,
        amount_cents: int,
        occurred_on: str,
        notes: str | None = None,
        created_by: int | None = None,
    ) -> BudgetEntry:
        """Create the expense and tick the item in one transaction."""
        with self.transaction() as conn:
            entry_id = self._insert(conn, "budget_entries", {
                "house_id": house_id,
                "type": BudgetEntryType.EXPENSE.value,
                "source": BudgetEntrySource.SHOPPING_LIST.value,
                "label": item.name,
                "amount_cents": amount_cents,
                "occurred_on": occurred_on,
                "is_forecast": 0,
                "notes": notes,
                "shopping_list_item_id": item.id,
                "created_by": created_by,
                "created_at": _now(),
            })
            conn.execute(
                "UPDATE shopping_list_items SET completed = 1 WHERE id = ?", (item.id,),
            )
        logger.info("Item #%d converted to expense #%d", item.id, entry_id)
        return self.get_by_id("budget_entry", house_id, entry_id)

    def convert_list_to_expense(
        self,
        house_id: int,
        shopping_list: ShoppingList,
        amount_cents: int,
        occurred_on: str,
        notes: str | None = None,
        created_by: int | None = None,
    ) -> BudgetEntry:
        """Create one expense for a whole list and tick all its items atomically."""
        with self.transaction() as conn:
            entry_id = self._insert(conn, "budget_entries", {
                "house_id": house_id,
                "type": BudgetEntryType.EXPENSE.value,
                "source": BudgetEntrySource.SHOPPING_LIST.value,
                "label": f"Courses - {shopping_list.name}",
                "amount_cents": amount_cents,
                "occurred_on": occurred_on,
                "is_forecast": 0,
                "notes": notes,
                "shopping_list_id": shopping_list.id,
                "created_by": created_by,
                "created_at": _now(),
            })
            conn.execute(
                "UPDATE shopping_list_items SET completed = 1 WHERE shopping_list_id = ?",
                (shopping_list.id,),
            )
        logger.info("List #%d converted to expense #%d", shopping_list.id, entry_id)
        return self.get_by_id("budget_entry", house_id, entry_id)

    def budget_entry_for_shopping(
        self,
        house_id: int,
        shopping_list_id: int | None = None,
        shopping_list_item_id: int | None = None,
    ) -> BudgetEntry | None:
        """The expense already created from a list or an item, if any."""
        if shopping_list_item_id is not None:
            rows = self._select("budget_entry", "t.shopping_list_item_id = ?",
                                [house_id, shopping_list_item_id])
        else:
            rows = self._select("budget_entry", "t.shopping_list_id = ?",
                                [house_id, shopping_list_id])
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def create_budget_entry(
        self,
        house_id: int,
        type: BudgetEntryType,
        label: str,
        amount_cents: int,
        occurred_on: str,
        *,
        source: BudgetEntrySource = BudgetEntrySource.MANUAL,
        is_forecast: bool = False,
        notes: str | None = None,
        recurring_entry_id: int | None = None,
        created_by: int | None = None,
    ) -> BudgetEntry:
        with self._connect() as conn:
            entry_id = self._insert(conn, "budget_entries", {
                "house_id": house_id, "type": type.value, "source": source.value,
                "label": label, "amount_cents": amount_cents,
                "occurred_on": occurred_on, "is_forecast": int(is_forecast),
                "notes": notes, "recurring_entry_id": recurring_entry_id,
                "created_by": created_by, "created_at": _now(),
            })
        logger.info("Budget entry created: #%d %s '%s' %d cents", entry_id, type.value, label, amount_cents)
        return self.get_by_id("budget_entry", house_id, entry_id)

    def month_entries(self, house_id: int, month: str) -> list[BudgetEntry]:
        """Concrete entries whose occurred_on falls in YYYY-MM."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM budget_entries
                WHERE house_id = ? AND substr(occurred_on, 1, 7) = ?
                ORDER BY occurred_on, created_at, id
                """,
                (house_id, month),
            ).fetchall()
        return [_row_to_budget_entry(r) for r in rows]

    def create_recurring_entry(
        self,
        house_id: int,
        type: BudgetEntryType,
        label: str,
        amount_cents: int,
        start_month: str,
        *,
        end_month: str | None = None,
        day_of_month: int | None = None,
        notes: str | None = None,
        created_by: int | None = None,
    ) -> BudgetRecurringEntry:
        with self._connect() as conn:
            entry_id = self._insert(conn, "budget_recurring_entries", {
                "house_id": house_id, "type": type.value, "label": label,
                "amount_cents": amount_cents, "day_of_month": day_of_month,
                "start_month": start_month, "end_month": end_month,
                "notes": notes, "created_by": created_by, "created_at": _now(),
            })
        logger.info("Recurring budget entry created: #%d '%s' from %s", entry_id, label, start_month)
        return self.get_by_id("budget_recurring_entry", house_id, entry_id)

    def active_recurring_entries(self, house_id: int, month: str) -> list[BudgetRecurringEntry]:
        """Rules whose [start_month, end_month] window contains the month."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM budget_recurring_entries
                WHERE house_id = ? AND start_month <= ?
                  AND (end_month IS NULL OR end_month >= ?)
                ORDER BY type, label
                """,
                (house_id, month, month),
            ).fetchall()
        return [_row_to_recurring_entry(r) for r in rows]

    # ------------------------------------------------------------------
    # Important dates
    # ------------------------------------------------------------------

    def create_important_date(
        self,
        house_id: int,
        title: str,
        date: str,
        type: ImportantDateType = ImportantDateType.OTHER,
        is_recurring_yearly: bool = True,
        description: str | None = None,
    ) -> ImportantDate:
        with self._connect() as conn:
            date_id = self._insert(conn, "important_dates", {
                "house_id": house_id, "title": title, "type": type.value,
                "date": date, "is_recurring_yearly": int(is_recurring_yearly),
                "description": description,
            })
        logger.info("Important date created: #%d '%s' on %s", date_id, title, date)
        return ImportantDate(date_id, house_id, title, type, date, is_recurring_yearly, description)
