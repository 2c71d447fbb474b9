"""Tests for src.core.agent — the bounded tool-calling turn loop."""

import json
from datetime import datetime

import pytest

from src.core.agent import (
    NO_ANSWER_TEXT,
    STEP_LIMIT_TEXT,
    build_model_input,
    build_system_prompt,
    check_api_key,
    parse_tool_arguments,
    run_agent_turn,
)
from src.core.errors import AgentConfigError
from src.data.models import Attachment, Message, MessageRole
from src.ports.model_port import ModelError, ModelResponse, ToolCall

NOW = datetime(2025, 3, 15, 9, 30)


class ScriptedModel:
    """Plays back canned responses and records every request."""

    def __init__(self, responses):
        self._responses = list(responses)
        self.calls = []

    async def respond(self, input_items, tools, previous_response_id=None):
        self.calls.append({
            "input": input_items,
            "tools": tools,
            "previous_response_id": previous_response_id,
        })
        assert self._responses, "model called more often than scripted"
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class LoopingModel:
    """Always asks for the same tool call."""

    def __init__(self):
        self.calls = 0

    async def respond(self, input_items, tools, previous_response_id=None):
        self.calls += 1
        return ModelResponse(
            response_id=f"resp_{self.calls}",
            tool_calls=[ToolCall("get_today_tasks", f"call_{self.calls}", "{}")],
        )


def _user(text, attachments=None):
    return Message(1, 1, MessageRole.USER, text, attachments=attachments or [])


def _attachment(path, mime_type, name="fichier"):
    return Attachment(1, 1, name, mime_type, 4, path)


# ---------------------------------------------------------------------------
# Turn loop
# ---------------------------------------------------------------------------


class TestRunAgentTurn:
    @pytest.mark.asyncio
    async def test_plain_answer(self, executor, ctx):
        model = ScriptedModel([ModelResponse("resp_1", text="Bonjour !")])
        result = await run_agent_turn([_user("Salut")], ctx, model, executor, now=NOW)
        assert result.assistant_text == "Bonjour !"
        assert result.used_tools == []
        assert len(model.calls) == 1

    @pytest.mark.asyncio
    async def test_system_prompt_is_first_item(self, executor, ctx):
        model = ScriptedModel([ModelResponse("resp_1", text="ok")])
        await run_agent_turn([_user("Salut")], ctx, model, executor, now=NOW)
        first = model.calls[0]["input"][0]
        assert first["role"] == "system"
        assert "samedi 15 mars 2025" in first["content"]
        assert "ISO: 2025-03-15" in first["content"]
        assert model.calls[0]["input"][1]["role"] == "user"
        assert model.calls[0]["previous_response_id"] is None

    @pytest.mark.asyncio
    async def test_tool_results_follow_call_order(self, executor, ctx, db, house):
        model = ScriptedModel([
            ModelResponse("resp_1", tool_calls=[
                ToolCall("create_zone", "call_a", '{"name": "Cave"}'),
                ToolCall("create_task", "call_b", '{"title": "Ranger la cave", "zone": "Cave"}'),
            ]),
            ModelResponse("resp_2", text="C'est fait."),
        ])
        result = await run_agent_turn([_user("Range la cave")], ctx, model, executor, now=NOW)

        assert result.assistant_text == "C'est fait."
        assert result.used_tools == ["create_zone", "create_task"]

        follow_up = model.calls[1]
        assert follow_up["previous_response_id"] == "resp_1"
        assert [item["type"] for item in follow_up["input"]] == ["function_call_output"] * 2
        assert [item["call_id"] for item in follow_up["input"]] == ["call_a", "call_b"]
        # The task could resolve the zone only because calls ran in order.
        task_output = json.loads(follow_up["input"][1]["output"])
        assert task_output["ok"] is True
        assert task_output["task"]["links"] == {"zone": "Cave"}

    @pytest.mark.asyncio
    async def test_step_limit(self, executor, ctx):
        model = LoopingModel()
        result = await run_agent_turn([_user("Boucle")], ctx, model, executor, now=NOW)
        assert model.calls == 8
        assert result.assistant_text == STEP_LIMIT_TEXT
        assert result.used_tools == ["get_today_tasks"] * 8

    @pytest.mark.asyncio
    async def test_custom_step_limit(self, executor, ctx):
        model = LoopingModel()
        await run_agent_turn([_user("Boucle")], ctx, model, executor, max_steps=3, now=NOW)
        assert model.calls == 3

    @pytest.mark.asyncio
    async def test_previous_response_id_chains(self, executor, ctx):
        model = ScriptedModel([
            ModelResponse("resp_1", tool_calls=[ToolCall("get_today_tasks", "c1", "{}")]),
            ModelResponse("resp_2", tool_calls=[ToolCall("list_shopping_lists", "c2", "{}")]),
            ModelResponse("resp_3", text="Voilà."),
        ])
        await run_agent_turn([_user("Résumé")], ctx, model, executor, now=NOW)
        assert [c["previous_response_id"] for c in model.calls] == [None, "resp_1", "resp_2"]

    @pytest.mark.asyncio
    async def test_malformed_arguments_reach_validation(self, executor, ctx):
        model = ScriptedModel([
            ModelResponse("resp_1", tool_calls=[ToolCall("create_task", "c1", "{not json")]),
            ModelResponse("resp_2", text="Il me manque un titre."),
        ])
        await run_agent_turn([_user("Crée")], ctx, model, executor, now=NOW)
        output = json.loads(model.calls[1]["input"][0]["output"])
        assert output["ok"] is False
        assert output["error"].startswith("title:")

    @pytest.mark.asyncio
    async def test_tool_failure_does_not_end_turn(self, executor, ctx):
        model = ScriptedModel([
            ModelResponse("resp_1", tool_calls=[ToolCall("launch_rocket", "c1", "{}")]),
            ModelResponse("resp_2", text="Je ne peux pas faire ça."),
        ])
        result = await run_agent_turn([_user("Décolle")], ctx, model, executor, now=NOW)
        assert result.assistant_text == "Je ne peux pas faire ça."
        assert result.used_tools == ["launch_rocket"]

    @pytest.mark.asyncio
    async def test_empty_answer(self, executor, ctx):
        model = ScriptedModel([ModelResponse("resp_1", text="")])
        result = await run_agent_turn([_user("?")], ctx, model, executor, now=NOW)
        assert result.assistant_text == NO_ANSWER_TEXT

    @pytest.mark.asyncio
    async def test_model_error_becomes_config_error(self, executor, ctx):
        model = ScriptedModel([ModelError("invalid api key")])
        with pytest.raises(AgentConfigError, match="invalid api key"):
            await run_agent_turn([_user("Salut")], ctx, model, executor, now=NOW)

    @pytest.mark.asyncio
    async def test_tools_catalogue_sent(self, executor, ctx):
        model = ScriptedModel([ModelResponse("resp_1", text="ok")])
        await run_agent_turn([_user("Salut")], ctx, model, executor, now=NOW)
        names = {tool["name"] for tool in model.calls[0]["tools"]}
        assert {"create_task", "list_monthly_budget", "delete_important_date"} <= names


# ---------------------------------------------------------------------------
# Input building
# ---------------------------------------------------------------------------


class TestBuildModelInput:
    def test_roles_and_text(self, tmp_path):
        history = [
            _user("Bonjour"),
            Message(2, 1, MessageRole.ASSISTANT, "Salut !"),
        ]
        items = build_model_input(history, tmp_path)
        assert items == [
            {"role": "user", "content": [{"type": "input_text", "text": "Bonjour"}]},
            {"role": "assistant", "content": "Salut !"},
        ]

    def test_image_and_pdf_inlined(self, tmp_path):
        (tmp_path / "1").mkdir()
        (tmp_path / "1" / "photo.png").write_bytes(b"\x89PNG")
        (tmp_path / "1" / "devis.pdf").write_bytes(b"%PDF")
        message = _user("Regarde", [
            _attachment("1/photo.png", "image/png", "photo.png"),
            _attachment("1/devis.pdf", "application/pdf", "devis.pdf"),
        ])
        content = build_model_input([message], tmp_path)[0]["content"]
        assert content[0] == {"type": "input_text", "text": "Regarde"}
        assert content[1]["type"] == "input_image"
        assert content[1]["image_url"] == "data:image/png;base64,iVBORw=="
        assert content[2] == {
            "type": "input_file",
            "filename": "devis.pdf",
            "file_data": "data:application/pdf;base64,JVBERg==",
        }

    def test_missing_file_becomes_note(self, tmp_path):
        message = _user("", [_attachment("1/absent.png", "image/png", "absent.png")])
        content = build_model_input([message], tmp_path)[0]["content"]
        assert content == [{"type": "input_text", "text": "Pièce jointe inaccessible: absent.png"}]

    def test_empty_message_placeholder(self, tmp_path):
        content = build_model_input([_user("   ")], tmp_path)[0]["content"]
        assert content == [{"type": "input_text", "text": "(message vide)"}]


class TestHelpers:
    @pytest.mark.parametrize("raw, expected", [
        ('{"title": "Tondre"}', {"title": "Tondre"}),
        ("", {}),
        (None, {}),
        ("{oops", {}),
        ("[1, 2]", {}),
        ('"texte"', {}),
    ])
    def test_parse_tool_arguments(self, raw, expected):
        assert parse_tool_arguments(raw) == expected

    @pytest.mark.parametrize("key", ["", "sk-test-123"])
    def test_check_api_key_rejects(self, key):
        with pytest.raises(AgentConfigError, match="OPENAI_API_KEY"):
            check_api_key(key)

    def test_check_api_key_accepts(self):
        check_api_key("sk-proj-abc")

    def test_system_prompt_mentions_rules(self):
        prompt = build_system_prompt(NOW)
        assert prompt.startswith("Tu es l'assistant IA de Soot.")
        assert "get_tasks_for_day" in prompt
        assert "Réponds en français." in prompt
