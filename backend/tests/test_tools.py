"""
Plugin tool tests.

Executors are called directly. Outbound HTTP goes through httpx.MockTransport
and LLM calls through fake call_llm replacements.

Run:
    cd backend
    python -m pytest tests/test_tools.py -v
"""

import json

import httpx
import pytest

from config.settings import settings
from exceptions import OrchestrationError
from services.template_service import TemplateService
from tools import (
    ToolConfig,
    ToolProgress,
    ToolResult,
    execute_tool,
    get_plugin_names,
    get_tools_for_plugins,
    tools_to_anthropic_format,
)
from tools.builtin import chat as chat_tool
from tools.builtin import documents as documents_tool
from tools.builtin import email as email_tool
from tools.builtin import weather as weather_tool
from tools.builtin import web as web_tool
from tests.helpers import fake_call_llm, sample_invoice_template


def _mock_httpx(monkeypatch, module, handler):
    """Route every httpx.AsyncClient the module opens through handler."""
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(module.httpx, "AsyncClient", factory)


async def _run(tool: ToolConfig, params):
    return [item async for item in execute_tool(tool, params, None, 1, {})]


SEARCH_HTML = """
<html><body>
  <div class="result">
    <h2 class="result__title"><a class="result__a" href="https://python.org">Welcome to Python.org</a></h2>
    <a class="result__url" href="https://python.org">python.org</a>
    <a class="result__snippet">The official home of the Python Programming Language.</a>
  </div>
  <div class="result">
    <h2 class="result__title"><a class="result__a" href="https://docs.python.org/3/">Python 3 Docs</a></h2>
    <a class="result__snippet">Documentation for Python 3.</a>
  </div>
  <div class="result"></div>
</body></html>
"""

WEATHER_JSON = {
    "location": {"name": "Oslo", "country": "Norway"},
    "current": {
        "temperature": 4,
        "feelslike": 1,
        "weather_descriptions": ["Overcast"],
        "wind_speed": 13,
        "wind_dir": "NW",
        "humidity": 81,
        "uv_index": 1,
    },
}


# ═══════════════════════════════════════════════════════════════════════════
# Registry and executor
# ═══════════════════════════════════════════════════════════════════════════


class TestRegistry:

    def test_builtin_plugins_registered(self):
        assert {"rag", "web", "weather", "email", "documents", "chat"} <= set(get_plugin_names())

    def test_tools_in_plugin_order(self):
        names = [t.name for t in get_tools_for_plugins(["email", "weather"])]
        assert names == ["send_email", "get_weather"]

    def test_unknown_plugin_raises_key_error(self):
        with pytest.raises(KeyError):
            get_tools_for_plugins(["email", "nope"])

    def test_anthropic_format(self):
        formatted = tools_to_anthropic_format(get_tools_for_plugins(["email"]))
        assert formatted[0]["name"] == "send_email"
        assert set(formatted[0]) == {"name", "description", "input_schema"}
        assert formatted[0]["input_schema"]["required"] == ["to", "body"]


class TestExecutor:

    async def test_sync_executor(self):
        tool = ToolConfig(
            name="echo", description="", input_schema={},
            executor=lambda params, db, user_id, context: f"echo {params['x']}",
        )
        items = await _run(tool, {"x": 1})
        assert items == [ToolResult(text="echo 1")]

    async def test_async_executor_returning_none(self):
        async def nothing(params, db, user_id, context):
            return None

        tool = ToolConfig(name="nothing", description="", input_schema={}, executor=nothing)
        assert await _run(tool, {}) == [ToolResult(text="")]

    async def test_streaming_executor(self):
        async def stream(params, db, user_id, context):
            yield ToolProgress(stage="one", message="first", progress=0.5)
            yield ToolResult(text="done", payload={"type": "x", "data": 1})

        tool = ToolConfig(name="stream", description="", input_schema={}, executor=stream, streaming=True)
        items = await _run(tool, {})

        assert isinstance(items[0], ToolProgress)
        assert items[-1] == ToolResult(text="done", payload={"type": "x", "data": 1})

    async def test_executor_errors_propagate(self):
        async def broken(params, db, user_id, context):
            raise RuntimeError("broken tool")

        tool = ToolConfig(name="broken", description="", input_schema={}, executor=broken)
        with pytest.raises(RuntimeError):
            await _run(tool, {})


# ═══════════════════════════════════════════════════════════════════════════
# Email
# ═══════════════════════════════════════════════════════════════════════════


class TestEmailTool:

    async def test_missing_recipient(self):
        result = await email_tool.execute_send_email({"body": "Hi"}, None, 1, {})
        assert result == "Please provide the recipient's email address."

    async def test_preview_until_confirmed(self, monkeypatch):
        calls = []
        _mock_httpx(monkeypatch, email_tool, lambda request: calls.append(request) or httpx.Response(200))

        result = await email_tool.execute_send_email(
            {"to": "bob@example.com", "body": "Lunch at noon?"}, None, 1, {}
        )

        assert result == "Preview Email:\nTo: bob@example.com\nBody: Lunch at noon?\n\nPlease confirm before sending."
        assert calls == []

    async def test_confirmed_email_is_posted(self, monkeypatch):
        calls = []

        def handler(request):
            calls.append(json.loads(request.content))
            return httpx.Response(202)

        monkeypatch.setattr(settings, "EMAIL_WEBHOOK_URL", "https://mail.example.com/hook")
        _mock_httpx(monkeypatch, email_tool, handler)

        result = await email_tool.execute_send_email(
            {"to": "bob@example.com", "body": "Lunch?", "subject": "Lunch", "confirm_and_send": True},
            None, 1, {},
        )

        assert result == email_tool.EMAIL_SENT_MESSAGE
        assert calls == [{"to": "bob@example.com", "emailBody": "Lunch?", "subject": "Lunch"}]

    async def test_webhook_failure(self, monkeypatch):
        monkeypatch.setattr(settings, "EMAIL_WEBHOOK_URL", "https://mail.example.com/hook")
        _mock_httpx(monkeypatch, email_tool, lambda request: httpx.Response(500))

        result = await email_tool.execute_send_email(
            {"to": "bob@example.com", "body": "x", "confirm_and_send": True}, None, 1, {}
        )
        assert result == email_tool.EMAIL_FAILED_MESSAGE

    async def test_no_webhook_configured(self, monkeypatch):
        monkeypatch.setattr(settings, "EMAIL_WEBHOOK_URL", None)

        result = await email_tool.execute_send_email(
            {"to": "bob@example.com", "body": "x", "confirm_and_send": True}, None, 1, {}
        )
        assert result == email_tool.EMAIL_FAILED_MESSAGE


# ═══════════════════════════════════════════════════════════════════════════
# Weather
# ═══════════════════════════════════════════════════════════════════════════


class TestWeatherTool:

    def test_format_report(self):
        report = weather_tool.format_weather_report(WEATHER_JSON)
        assert "Location: Oslo, Norway" in report
        assert "Weather: Overcast" in report
        assert "Temperature: 4°C (Feels like 1°C)" in report
        assert "Wind: 13 km/h NW" in report
        assert "Humidity: 81%" in report

    def test_format_report_without_description(self):
        data = {"location": WEATHER_JSON["location"], "current": {"temperature": 3}}
        assert "No description available" in weather_tool.format_weather_report(data)

    @pytest.mark.parametrize("data", [{}, {"location": {"name": "x"}}, {"error": {"code": 615}}])
    def test_format_report_missing_data(self, data):
        assert weather_tool.format_weather_report(data) is None

    async def test_empty_query(self):
        result = await weather_tool.execute_get_weather({"query": "  "}, None, 1, {})
        assert result.text == "Please provide a valid query."

    async def test_lookup(self, monkeypatch):
        requests_seen = []

        async def fake_llm(system_message, user_message, values, model_config=None, response_schema=None, options=None):
            from agents.prompts.llm import LLMResult
            if response_schema is not None:
                return LLMResult(input=values, data={"city": "Oslo"})
            return LLMResult(input=values, data="Cloudy and 4°C in Oslo.")

        def handler(request):
            requests_seen.append(request)
            return httpx.Response(200, json=WEATHER_JSON)

        monkeypatch.setattr(weather_tool, "call_llm", fake_llm)
        _mock_httpx(monkeypatch, weather_tool, handler)

        result = await weather_tool.execute_get_weather({"query": "Weather in Oslo today?"}, None, 1, {})

        assert result.text == "Cloudy and 4°C in Oslo."
        assert result.payload["type"] == "weather"
        assert result.payload["data"]["city"] == "Oslo"
        assert requests_seen[0].url.params["query"] == "Oslo"

    async def test_unknown_location(self, monkeypatch):
        monkeypatch.setattr(weather_tool, "call_llm", fake_call_llm(error="no city"))
        _mock_httpx(monkeypatch, weather_tool, lambda request: httpx.Response(200, json={"success": False}))

        result = await weather_tool.execute_get_weather({"query": "Atlantis"}, None, 1, {})
        assert result.text == "Could not retrieve weather data for Atlantis."

    async def test_http_error(self, monkeypatch):
        monkeypatch.setattr(weather_tool, "call_llm", fake_call_llm(error="no city"))
        _mock_httpx(monkeypatch, weather_tool, lambda request: httpx.Response(503))

        result = await weather_tool.execute_get_weather({"query": "Oslo"}, None, 1, {})
        assert result.text.startswith("Error retrieving weather data:")


# ═══════════════════════════════════════════════════════════════════════════
# Web
# ═══════════════════════════════════════════════════════════════════════════


class TestWebTools:

    def test_parse_search_results(self):
        results = web_tool.parse_search_results(SEARCH_HTML, 5)
        assert results == [
            {
                "title": "Welcome to Python.org",
                "url": "python.org",
                "snippet": "The official home of the Python Programming Language.",
            },
            {
                "title": "Python 3 Docs",
                "url": "https://docs.python.org/3/",
                "snippet": "Documentation for Python 3.",
            },
        ]

    def test_parse_search_results_limit(self):
        assert len(web_tool.parse_search_results(SEARCH_HTML, 1)) == 1

    async def test_search_summarized(self, monkeypatch):
        recorder = []
        monkeypatch.setattr(web_tool, "call_llm", fake_call_llm(reply="Python.org is the home of Python.", recorder=recorder))
        _mock_httpx(monkeypatch, web_tool, lambda request: httpx.Response(200, text=SEARCH_HTML))

        result = await web_tool.execute_search_web({"query": "python"}, None, 1, {})

        assert result.text == "Python.org is the home of Python."
        assert result.payload["type"] == "web_search_results"
        assert "Welcome to Python.org" in recorder[0]["values"]["search_result"]

    async def test_search_list(self, monkeypatch):
        _mock_httpx(monkeypatch, web_tool, lambda request: httpx.Response(200, text=SEARCH_HTML))

        result = await web_tool.execute_search_web({"query": "python", "summarize": False}, None, 1, {})

        assert result.text.startswith("Search results for: python")
        assert "1. Welcome to Python.org" in result.text
        assert "   URL: https://docs.python.org/3/" in result.text

    async def test_search_error(self, monkeypatch):
        _mock_httpx(monkeypatch, web_tool, lambda request: httpx.Response(500))

        result = await web_tool.execute_search_web({"query": "python"}, None, 1, {})
        assert result.text == web_tool.SEARCH_ERROR_MESSAGE

    async def test_search_no_results(self, monkeypatch):
        _mock_httpx(monkeypatch, web_tool, lambda request: httpx.Response(200, text="<html></html>"))

        result = await web_tool.execute_search_web({"query": "python"}, None, 1, {})
        assert result.text == web_tool.NO_RESULTS_MESSAGE

    async def test_fetch_webpage(self, monkeypatch):
        page = (
            "<html><head><title>Example</title><script>var x = 1;</script></head>"
            "<body><nav>Menu</nav><p>Hello   world</p><p>Second line</p></body></html>"
        )
        _mock_httpx(
            monkeypatch, web_tool,
            lambda request: httpx.Response(200, text=page, headers={"content-type": "text/html"}),
        )

        result = await web_tool.execute_fetch_webpage({"url": "example.com"}, None, 1, {})

        assert result.startswith("URL: https://example.com\nTitle: Example")
        assert "Hello   world\nSecond line" in result
        assert "Menu" not in result
        assert "var x" not in result

    async def test_fetch_rejects_binary(self, monkeypatch):
        _mock_httpx(
            monkeypatch, web_tool,
            lambda request: httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"}),
        )

        result = await web_tool.execute_fetch_webpage({"url": "https://example.com/a.pdf"}, None, 1, {})
        assert result.startswith("Error: URL returned non-HTML content")


# ═══════════════════════════════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════════════════════════════


class TestDocumentTools:

    async def test_no_templates(self):
        result = await documents_tool.execute_list_templates({}, None, 1, {})
        assert result.text == "No document templates are available."

    async def test_list_and_extract(self):
        await TemplateService().upload_template("Invoice.docx", sample_invoice_template())

        listed = await documents_tool.execute_list_templates({}, None, 1, {})
        parameters = await documents_tool.execute_extract_template_parameters(
            {"template_name": "Invoice.docx"}, None, 1, {}
        )

        assert listed.text == "Available templates:\n- Invoice.docx"
        assert listed.payload == {"type": "template_list", "data": ["Invoice.docx"]}
        assert json.loads(parameters) == {
            "client_name": "",
            "approved": False,
            "items": [{"item_name": "", "item_qty": ""}],
            "notes": "",
        }

    async def test_extract_missing_template(self):
        result = await documents_tool.execute_extract_template_parameters(
            {"template_name": "Missing.docx"}, None, 1, {}
        )
        assert result == "{}"

    async def test_generate(self):
        await TemplateService().upload_template("Invoice.docx", sample_invoice_template())

        result = await documents_tool.execute_generate_document(
            {"template_name": "Invoice.docx", "inputs": json.dumps({"client_name": "ACME"})}, None, 1, {}
        )

        assert result.text.startswith("http://testserver/api/files/generateddocs/Generated_")
        assert result.text.endswith(".docx")
        assert result.payload["data"] == {"template_name": "Invoice.docx", "url": result.text}

    async def test_generate_missing_template(self):
        result = await documents_tool.execute_generate_document(
            {"template_name": "Missing.docx", "inputs": {}}, None, 1, {}
        )
        assert result.text == "Template not found."

    async def test_generate_bad_inputs(self):
        result = await documents_tool.execute_generate_document(
            {"template_name": "Invoice.docx", "inputs": "{not json"}, None, 1, {}
        )
        assert result.text == "Error: inputs must be a JSON object."


# ═══════════════════════════════════════════════════════════════════════════
# Basic chat
# ═══════════════════════════════════════════════════════════════════════════


class TestChatTool:

    async def test_reply(self, monkeypatch):
        recorder = []
        monkeypatch.setattr(chat_tool, "call_llm", fake_call_llm(reply="Hello there!", recorder=recorder))

        result = await chat_tool.execute_chat({"query": "Hi"}, None, 1, {})

        assert result == "Hello there!"
        assert recorder[0]["values"] == {"query": "Hi"}
        assert recorder[0]["options"].history == []

    async def test_error_message(self, monkeypatch):
        monkeypatch.setattr(chat_tool, "call_llm", fake_call_llm(error="service unavailable"))

        result = await chat_tool.execute_chat({"query": "Hi"}, None, 1, {})
        assert result == "Sorry, an error occurred while processing your request."

    async def test_empty_query(self):
        assert await chat_tool.execute_chat({"query": ""}, None, 1, {}) == "Error: query is required."

    async def test_generate_reply_raises(self, monkeypatch):
        monkeypatch.setattr(chat_tool, "call_llm", fake_call_llm(reply=""))
        with pytest.raises(OrchestrationError):
            await chat_tool.generate_chat_reply([], "Hi")

    async def test_uses_session_history(self, monkeypatch, db, user):
        from services.chat_service import ChatService

        service = ChatService(db)
        chat = await service.create_chat(user.user_id)
        await service.add_exchange(chat.id, user.user_id, "My name is Ada.", "Nice to meet you, Ada.")

        recorder = []
        monkeypatch.setattr(chat_tool, "call_llm", fake_call_llm(reply="Your name is Ada.", recorder=recorder))

        result = await chat_tool.execute_chat(
            {"query": "What is my name?"}, db, user.user_id, {"conversation_id": chat.id}
        )

        assert result == "Your name is Ada."
        history = recorder[0]["options"].history
        assert [m.content for m in history] == ["My name is Ada.", "Nice to meet you, Ada."]
        assert [m.role.value for m in history] == ["user", "assistant"]
