"""Tests for src.core.tools — tool catalogue and executor."""

import json
import sqlite3
from unittest.mock import MagicMock

import pytest

from src.core.features import FeatureFlags
from src.core.tools import TOOL_SPECS, ToolContext, ToolExecutor, function_tools
from src.data.models import TaskStatus


# ---------------------------------------------------------------------------
# Catalogue & dispatch
# ---------------------------------------------------------------------------


class TestCatalogue:
    def test_every_tool_has_a_handler(self, executor):
        assert sorted(executor.tool_names) == sorted(spec.name for spec in TOOL_SPECS)

    def test_tool_names_unique(self):
        names = [spec.name for spec in TOOL_SPECS]
        assert len(names) == len(set(names))

    def test_function_tools_format(self):
        tools = function_tools()
        assert len(tools) == len(TOOL_SPECS)
        create_task = next(t for t in tools if t["name"] == "create_task")
        assert create_task["type"] == "function"
        params = create_task["parameters"]
        assert params["type"] == "object"
        assert params["additionalProperties"] is False
        assert params["required"] == ["title"]
        assert "zone" in params["properties"]

    def test_missing_handler_detected_at_construction(self, db, monkeypatch):
        original = ToolExecutor._build_handlers

        def without_delete_task(self):
            handlers = original(self)
            handlers.pop("delete_task")
            return handlers

        monkeypatch.setattr(ToolExecutor, "_build_handlers", without_delete_task)
        with pytest.raises(ValueError, match="delete_task"):
            ToolExecutor(db, FeatureFlags())

    def test_undeclared_handler_detected_at_construction(self, db, monkeypatch):
        original = ToolExecutor._build_handlers

        def with_extra(self):
            handlers = original(self)
            handlers["launch_rocket"] = lambda args, ctx: {}
            return handlers

        monkeypatch.setattr(ToolExecutor, "_build_handlers", with_extra)
        with pytest.raises(ValueError, match="launch_rocket"):
            ToolExecutor(db, FeatureFlags())


# ---------------------------------------------------------------------------
# Error funnel
# ---------------------------------------------------------------------------


class TestErrorFunnel:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, call_tool):
        result = await call_tool("launch_rocket")
        assert result == {"ok": False, "error": "Tool non pris en charge: launch_rocket"}

    @pytest.mark.asyncio
    async def test_validation_error_names_field(self, call_tool):
        result = await call_tool("create_task", {})
        assert result["ok"] is False
        assert result["error"].startswith("title:")

    @pytest.mark.asyncio
    async def test_extra_argument_rejected(self, call_tool):
        result = await call_tool("create_zone", {"name": "Cave", "color": "bleu"})
        assert result["ok"] is False
        assert "color" in result["error"]

    @pytest.mark.asyncio
    async def test_bad_date_format(self, call_tool):
        result = await call_tool("get_tasks_for_day", {"date": "01/04/2025"})
        assert result["ok"] is False
        assert result["error"].startswith("date:")

    @pytest.mark.asyncio
    async def test_impossible_date(self, call_tool):
        result = await call_tool("get_tasks_for_day", {"date": "2025-02-30"})
        assert result == {"ok": False, "error": "Date invalide: 2025-02-30"}

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self, db, ctx):
        executor = ToolExecutor(db, FeatureFlags())
        executor._handlers["get_today_tasks"] = MagicMock(side_effect=RuntimeError("boom"))
        result = json.loads(await executor.execute("get_today_tasks", {}, ctx))
        assert result == {"ok": False, "error": "Erreur inattendue pendant l'exécution du tool"}

    @pytest.mark.asyncio
    async def test_on_change_only_after_successful_mutation(self, db, ctx):
        on_change = MagicMock()
        executor = ToolExecutor(db, FeatureFlags(), on_change=on_change)
        await executor.execute("get_today_tasks", {}, ctx)
        await executor.execute("create_zone", {}, ctx)
        on_change.assert_not_called()
        await executor.execute("create_zone", {"name": "Cave"}, ctx)
        on_change.assert_called_once_with(("settings",))

    @pytest.mark.asyncio
    async def test_on_entity_created(self, db, ctx):
        on_entity_created = MagicMock()
        executor = ToolExecutor(db, FeatureFlags(), on_entity_created=on_entity_created)
        raw = await executor.execute("create_project", {"name": "Véranda"}, ctx)
        project_id = json.loads(raw)["project"]["id"]
        on_entity_created.assert_called_once_with("project", project_id)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TestTaskTools:
    @pytest.mark.asyncio
    async def test_create_task_with_zone_and_due_date(self, call_tool, db, house):
        jardin = db.create_named("zone", house.id, "Jardin")
        result = await call_tool("create_task", {
            "title": "Nettoyer la gouttière",
            "zone": "Jardin",
            "dueDate": "2025-04-01",
        })
        assert result["ok"] is True
        assert result["message"] == "Tâche créée"
        assert result["task"]["dueDate"] == "1 avril 2025"
        assert result["task"]["links"] == {"zone": "Jardin"}

        task = db.get_by_id("task", house.id, result["task"]["id"])
        assert task.title == "Nettoyer la gouttière"
        assert task.zone_id == jardin.id
        assert task.due_date == "2025-04-01"

    @pytest.mark.asyncio
    async def test_create_task_records_creator_and_assignee(self, call_tool, db, house, member):
        result = await call_tool("create_task", {"title": "Tondre", "assignee": "Alice"})
        task = db.get_by_id("task", house.id, result["task"]["id"])
        assert task.created_by == member.id
        assert task.assignee_id == member.id
        assert result["task"]["links"]["assignee"] == "Alice Martin"

    @pytest.mark.asyncio
    async def test_create_task_unknown_zone_fails(self, call_tool, db, house):
        result = await call_tool("create_task", {"title": "Tondre", "zone": "Lune"})
        assert result["ok"] is False
        assert "Zone introuvable" in result["error"]
        assert db.list_tasks(house.id) == []

    @pytest.mark.asyncio
    async def test_create_recurring_task(self, call_tool, db, house):
        result = await call_tool("create_task", {
            "title": "Sortir les poubelles",
            "recurrenceUnit": "WEEKLY",
        })
        assert result["ok"] is True
        assert result["message"] == "Tâche récurrente créée"
        assert result["recurrence"] == {"unit": "WEEKLY", "interval": 1}
        assert result["task"]["dueDate"] == "15 mars 2025"

        templates = db.list_recurring_templates(house.id)
        assert len(templates) == 1
        instances = db.list_tasks(house.id)
        assert len(instances) == 1
        assert instances[0].parent_id == templates[0].id
        assert [t.id for t in db.tasks_for_day(house.id, "2025-03-15")] == [instances[0].id]

    @pytest.mark.asyncio
    async def test_interval_without_unit_rejected(self, call_tool):
        result = await call_tool("create_task", {"title": "Arroser", "recurrenceInterval": 2})
        assert result["ok"] is False
        assert result["error"].startswith("recurrenceInterval")

    @pytest.mark.asyncio
    async def test_today_tasks(self, call_tool, db, house):
        db.create_task(house.id, "Aujourd'hui", due_date="2025-03-15")
        db.create_task(house.id, "Demain", due_date="2025-03-16")
        result = await call_tool("get_today_tasks")
        assert result["date"] == "15 mars 2025"
        assert [t["title"] for t in result["tasks"]] == ["Aujourd'hui"]

    @pytest.mark.asyncio
    async def test_update_task_partial(self, call_tool, db, house):
        task = db.create_task(house.id, "Réparer la fuite", description="sous l'évier")
        result = await call_tool("update_task", {"taskTitle": "fuite", "dueDate": "2025-03-20"})
        assert result["ok"] is True
        updated = db.get_by_id("task", house.id, task.id)
        assert updated.due_date == "2025-03-20"
        assert updated.description == "sous l'évier"

    @pytest.mark.asyncio
    async def test_update_task_clears_zone_with_null(self, call_tool, db, house):
        zone = db.create_named("zone", house.id, "Cave")
        task = db.create_task(house.id, "Ranger", relations={"zone_id": zone.id})
        result = await call_tool("update_task", {"taskId": task.id, "zone": None})
        assert result["ok"] is True
        assert db.get_by_id("task", house.id, task.id).zone_id is None

    @pytest.mark.asyncio
    async def test_update_task_nothing_to_change(self, call_tool, db, house):
        task = db.create_task(house.id, "Ranger")
        result = await call_tool("update_task", {"taskId": task.id})
        assert result == {"ok": False, "error": "Aucune modification fournie."}

    @pytest.mark.asyncio
    async def test_update_task_title_cannot_be_null(self, call_tool, db, house):
        task = db.create_task(house.id, "Ranger")
        result = await call_tool("update_task", {"taskId": task.id, "title": None})
        assert result["ok"] is False
        assert db.get_by_id("task", house.id, task.id).title == "Ranger"

    @pytest.mark.asyncio
    async def test_update_task_status(self, call_tool, db, house):
        task = db.create_task(house.id, "Ranger")
        result = await call_tool("update_task_status", {"taskId": task.id, "status": "DONE"})
        assert result["message"] == "Statut de tâche mis à jour"
        assert db.get_by_id("task", house.id, task.id).status == TaskStatus.DONE

    @pytest.mark.asyncio
    async def test_delete_task_of_other_household(self, call_tool, db, other_house):
        foreign = db.create_task(other_house.id, "Secret")
        result = await call_tool("delete_task", {"taskId": foreign.id})
        assert result["ok"] is False
        assert db.get_by_id("task", other_house.id, foreign.id) is not None


# ---------------------------------------------------------------------------
# Named entities
# ---------------------------------------------------------------------------


class TestNamedEntityTools:
    @pytest.mark.asyncio
    async def test_update_zone_ambiguous_renames_nothing(self, call_tool, db, house):
        first = db.create_named("zone", house.id, "Garage")
        second = db.create_named("zone", house.id, "Garage")
        result = await call_tool("update_zone", {"currentName": "Garage", "name": "Garage nord"})

        assert result["ok"] is False
        assert f"#{first.id}" in result["error"]
        assert f"#{second.id}" in result["error"]
        assert {c["id"] for c in result["candidates"]} == {first.id, second.id}
        assert {z.name for z in db.list_all("zone", house.id)} == {"Garage"}

    @pytest.mark.asyncio
    async def test_update_zone_by_id(self, call_tool, db, house):
        zone = db.create_named("zone", house.id, "Garage")
        db.create_named("zone", house.id, "Garage")
        result = await call_tool("update_zone", {"id": zone.id, "name": "Garage nord"})
        assert result["message"] == "Zone mise à jour"
        assert db.get_by_id("zone", house.id, zone.id).name == "Garage nord"

    @pytest.mark.asyncio
    async def test_create_animal_with_species(self, call_tool, db, house):
        result = await call_tool("create_animal", {"name": "Filou", "species": "chat"})
        assert result["animal"]["species"] == "chat"
        assert db.find_by_name("animal", house.id, "filou")[0].detail == "chat"

    @pytest.mark.asyncio
    async def test_update_person_relation(self, call_tool, db, house):
        db.create_named("person", house.id, "Mamie", "grand-mère")
        result = await call_tool("update_person", {"currentName": "Mamie", "relation": "voisine"})
        assert result["person"]["relation"] == "voisine"

    @pytest.mark.asyncio
    async def test_delete_equipment(self, call_tool, db, house):
        db.create_equipment(house.id, "Chaudière", location="Cave")
        result = await call_tool("delete_equipment", {"name": "chaudière"})
        assert result["message"] == "Équipement supprimé"
        assert db.list_all("equipment", house.id) == []

    @pytest.mark.asyncio
    async def test_house_context(self, call_tool, db, house):
        db.create_named("zone", house.id, "Salon")
        db.create_named("zone", house.id, "Cuisine")
        result = await call_tool("get_house_context")
        data = result["data"]
        assert data["today"] == "samedi 15 mars 2025"
        assert data["members"] == ["Alice Martin"]
        assert data["zones"] == ["Cuisine", "Salon"]
        assert data["budgetEnabled"] is True


# ---------------------------------------------------------------------------
# Shopping lists
# ---------------------------------------------------------------------------


class TestShoppingTools:
    @pytest.mark.asyncio
    async def test_add_and_toggle_item(self, call_tool, db, house):
        db.create_shopping_list(house.id, "Courses")
        added = await call_tool("add_shopping_item", {
            "shoppingListName": "courses", "itemName": "Lait", "estimatedCost": 1.25,
        })
        assert added["item"]["estimatedCost"] == "1,25 €"
        toggled = await call_tool("toggle_shopping_item", {"itemName": "Lait"})
        assert toggled["message"] == "Article coché"
        toggled = await call_tool("toggle_shopping_item", {"itemName": "Lait"})
        assert toggled["message"] == "Article décoché"

    @pytest.mark.asyncio
    async def test_clear_list(self, call_tool, db, house):
        shopping_list = db.create_shopping_list(house.id, "Courses")
        db.add_shopping_item(house.id, shopping_list.id, "Lait")
        result = await call_tool("clear_shopping_list", {"shoppingListId": shopping_list.id})
        assert result["removedItems"] == 1

    @pytest.mark.asyncio
    async def test_convert_item_uses_estimate(self, call_tool, db, house):
        shopping_list = db.create_shopping_list(house.id, "Bricolage")
        item = db.add_shopping_item(house.id, shopping_list.id, "Perceuse", 8999)
        result = await call_tool("convert_shopping_item_to_expense", {"itemId": item.id})
        assert result["ok"] is True
        assert result["budgetEntry"]["amount"] == "89,99 €"
        assert result["budgetEntry"]["occurredOn"] == "15 mars 2025"
        assert db.get_by_id("shopping_item", house.id, item.id).completed is True

    @pytest.mark.asyncio
    async def test_convert_item_twice_rejected(self, call_tool, db, house):
        shopping_list = db.create_shopping_list(house.id, "Bricolage")
        item = db.add_shopping_item(house.id, shopping_list.id, "Perceuse", 8999)
        await call_tool("convert_shopping_item_to_expense", {"itemId": item.id})
        result = await call_tool("convert_shopping_item_to_expense", {"itemId": item.id})
        assert result["ok"] is False
        assert "déjà été converti" in result["error"]
        assert len(db.month_entries(house.id, "2025-03")) == 1

    @pytest.mark.asyncio
    async def test_convert_item_without_amount_or_estimate(self, call_tool, db, house):
        shopping_list = db.create_shopping_list(house.id, "Courses")
        item = db.add_shopping_item(house.id, shopping_list.id, "Pain")
        result = await call_tool("convert_shopping_item_to_expense", {"itemId": item.id})
        assert result["ok"] is False
        assert result["error"].startswith("amount:")

    @pytest.mark.asyncio
    async def test_convert_list_sums_estimates(self, call_tool, db, house):
        shopping_list = db.create_shopping_list(house.id, "Marché")
        db.add_shopping_item(house.id, shopping_list.id, "Pommes", 350)
        db.add_shopping_item(house.id, shopping_list.id, "Poires", 420)
        db.add_shopping_item(house.id, shopping_list.id, "Herbes")
        result = await call_tool("convert_shopping_list_to_expense", {"shoppingListName": "Marché"})
        assert result["budgetEntry"]["amount"] == "7,70 €"
        assert result["budgetEntry"]["label"] == "Courses - Marché"
        assert result["completedItems"] == 3

    @pytest.mark.asyncio
    async def test_conversion_failure_leaves_no_partial_state(self, call_tool, db, house):
        shopping_list = db.create_shopping_list(house.id, "Courses")
        item = db.add_shopping_item(house.id, shopping_list.id, "Lait", 120)
        with sqlite3.connect(db.db_path) as conn:
            conn.execute(
                "CREATE TRIGGER fail_tick BEFORE UPDATE ON shopping_list_items "
                "BEGIN SELECT RAISE(ABORT, 'tick failed'); END;"
            )
        result = await call_tool("convert_shopping_item_to_expense", {"itemId": item.id})
        assert result["ok"] is False
        assert db.month_entries(house.id, "2025-03") == []
        assert db.get_by_id("shopping_item", house.id, item.id).completed is False


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


class TestBudgetTools:
    @pytest.mark.asyncio
    async def test_budget_disabled(self, db, ctx):
        executor = ToolExecutor(db, FeatureFlags(budget=False))
        for name, args in [
            ("list_monthly_budget", {}),
            ("create_budget_entry", {"type": "EXPENSE", "label": "Pizza", "amount": 20}),
            ("convert_shopping_list_to_expense", {"shoppingListName": "Courses"}),
        ]:
            result = json.loads(await executor.execute(name, args, ctx))
            assert result["ok"] is False
            assert "module budget" in result["error"]

    @pytest.mark.asyncio
    async def test_create_entry(self, call_tool):
        result = await call_tool("create_budget_entry", {
            "type": "INCOME", "label": "Remboursement", "amount": 125.5,
        })
        assert result["message"] == "Revenu ajouté"
        assert result["budgetEntry"]["amount"] == "125,50 €"

    @pytest.mark.asyncio
    async def test_recurring_end_before_start_rejected_at_creation(self, call_tool, db, house):
        result = await call_tool("create_budget_recurring_entry", {
            "type": "EXPENSE", "label": "Assurance", "amount": 40,
            "startMonth": "2025-06", "endMonth": "2025-05",
        })
        assert result == {
            "ok": False,
            "error": "Le mois de fin doit être postérieur ou égal au mois de début.",
        }
        assert db.list_all("budget_recurring_entry", house.id) == []

    @pytest.mark.asyncio
    async def test_recurring_end_before_start_rejected_at_update(self, call_tool, db, house):
        created = await call_tool("create_budget_recurring_entry", {
            "type": "EXPENSE", "label": "Assurance", "amount": 40, "startMonth": "2025-06",
        })
        rule_id = created["recurringEntry"]["id"]
        result = await call_tool("update_budget_recurring_entry", {
            "id": rule_id, "endMonth": "2025-01",
        })
        assert result["ok"] is False
        assert "mois de fin" in result["error"]
        assert db.get_by_id("budget_recurring_entry", house.id, rule_id).end_month is None

    @pytest.mark.asyncio
    async def test_recurring_update_moving_start_after_end_rejected(self, call_tool, db, house):
        created = await call_tool("create_budget_recurring_entry", {
            "type": "EXPENSE", "label": "Assurance", "amount": 40,
            "startMonth": "2025-01", "endMonth": "2025-06",
        })
        result = await call_tool("update_budget_recurring_entry", {
            "currentLabel": "Assurance", "startMonth": "2025-09",
        })
        assert result["ok"] is False
        rule = db.get_by_id("budget_recurring_entry", house.id, created["recurringEntry"]["id"])
        assert rule.start_month == "2025-01"

    @pytest.mark.asyncio
    async def test_monthly_budget_includes_projection(self, call_tool):
        await call_tool("create_budget_recurring_entry", {
            "type": "INCOME", "label": "Salaire", "amount": 2500,
            "startMonth": "2025-01", "dayOfMonth": 28,
        })
        await call_tool("create_budget_entry", {
            "type": "EXPENSE", "label": "Plombier", "amount": 120, "occurredOn": "2025-03-03",
        })
        result = await call_tool("list_monthly_budget", {"month": "2025-03"})
        assert result["monthLabel"] == "mars 2025"
        assert result["summary"]["balance"] == "2 380,00 €"
        assert [e["label"] for e in result["entries"]] == ["Plombier", "Salaire"]
        assert result["entries"][1]["projected"] is True


# ---------------------------------------------------------------------------
# Important dates
# ---------------------------------------------------------------------------


class TestImportantDateTools:
    @pytest.mark.asyncio
    async def test_create_birthday(self, call_tool):
        result = await call_tool("create_important_date", {
            "title": "Anniversaire de Léa", "date": "2015-02-10", "type": "BIRTHDAY",
        })
        assert result["importantDate"]["nextOccurrence"] == "10 février 2026"

    @pytest.mark.asyncio
    async def test_list_within_days(self, call_tool, db, house):
        db.create_important_date(house.id, "Fête des voisins", "2025-03-20", is_recurring_yearly=False)
        db.create_important_date(house.id, "Vacances", "2025-07-01", is_recurring_yearly=False)
        result = await call_tool("list_important_dates", {"withinDays": 30})
        assert [d["title"] for d in result["importantDates"]] == ["Fête des voisins"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, call_tool, db, house):
        db.create_important_date(house.id, "Mariage", "2010-06-12")
        updated = await call_tool("update_important_date", {
            "currentTitle": "Mariage", "title": "Anniversaire de mariage",
        })
        assert updated["message"] == "Date importante mise à jour"
        deleted = await call_tool("delete_important_date", {"title": "mariage"})
        assert deleted["message"] == "Date importante supprimée"
        assert db.list_all("important_date", house.id) == []


class TestHouseholdIsolation:
    @pytest.mark.asyncio
    async def test_context_scopes_every_call(self, executor, db, house, other_house):
        db.create_named("zone", other_house.id, "Jardin")
        ctx = ToolContext(user_id=1, house_id=house.id)
        raw = await executor.execute(
            "create_task", {"title": "Tondre la pelouse", "zone": "Jardin"}, ctx,
        )
        assert json.loads(raw)["ok"] is False
