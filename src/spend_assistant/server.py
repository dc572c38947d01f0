"""MCP server exposing spend analytics, Plaid sync and the assistant."""

import asyncio
import json
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .analytics import AnalyticsEngine
from .assistant import AssistantOrchestrator
from .config import Settings
from .dashboard import WidgetDataService, apply_widget_defaults, validate_widget
from .database import Database
from .llm import GeminiClient, LanguageModel
from .logging_setup import configure_logging, get_logger
from .sync_engine import SyncEngine
from .tools import ToolRegistry

log = get_logger(__name__)

# Initialize MCP server
server = Server("spend-assistant")

# Global state
_settings: Settings | None = None
_db: Database | None = None
_registry: ToolRegistry | None = None
_assistant: AssistantOrchestrator | None = None
_sync_engine: SyncEngine | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_db() -> Database:
    """Get or create database instance."""
    global _db
    if _db is None:
        db_path = get_settings().db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _db = Database(db_path)
        _db.init_schema()
    return _db


def get_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = ToolRegistry(AnalyticsEngine(get_db()))
    return _registry


def get_assistant() -> AssistantOrchestrator:
    """Get or create the assistant backed by Gemini."""
    global _assistant
    if _assistant is None:
        settings = get_settings()
        if not settings.gemini_api_key and not settings.google_cloud_project:
            raise ValueError(
                "GEMINI_API_KEY (or GOOGLE_CLOUD_PROJECT for Vertex AI) environment variable is required."
            )
        model = GeminiClient(
            settings.gemini_model,
            api_key=settings.gemini_api_key,
            project=settings.google_cloud_project,
            location=settings.google_cloud_location,
        )
        _assistant = _build_assistant(model, settings)
    return _assistant


def _build_assistant(model: LanguageModel, settings: Settings) -> AssistantOrchestrator:
    return AssistantOrchestrator(
        model,
        get_registry(),
        get_db(),
        ttl=settings.ai_ttl,
        history_limit=settings.ai_history_limit,
        model_timeout=settings.ai_model_timeout.total_seconds(),
    )


def get_sync_engine() -> SyncEngine:
    """Get or create sync engine instance."""
    global _sync_engine
    if _sync_engine is None:
        settings = get_settings()
        if not settings.plaid_client_id or not settings.plaid_secret:
            raise ValueError("PLAID_CLIENT_ID and PLAID_SECRET environment variables are required.")
        _sync_engine = SyncEngine(get_db(), settings.plaid_client_id, settings.plaid_secret, settings.plaid_environment)
    return _sync_engine


def init_for_testing(db: Database, model: LanguageModel | None = None, settings: Settings | None = None) -> None:
    """Initialize server with a test database and optional fake model.

    Args:
        db: Database instance to use.
        model: Language model for ask_assistant (can be a fake).
        settings: Settings; defaults to Settings() with dummy Plaid credentials.
    """
    global _settings, _db, _registry, _assistant, _sync_engine
    _settings = settings or Settings(plaid_client_id="test_client", plaid_secret="test_secret")
    _db = db
    _registry = ToolRegistry(AnalyticsEngine(db))
    _assistant = _build_assistant(model, _settings) if model is not None else None
    _sync_engine = SyncEngine(db, _settings.plaid_client_id or "", _settings.plaid_secret or "", _settings.plaid_environment)


def _text(result: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result, ensure_ascii=False, indent=2))]


# ============================================================================
# Tools
# ============================================================================

SERVER_TOOLS = [
    Tool(
        name="sync_transactions",
        description="Sync transactions for one bank from Plaid. Use to refresh data before analysis.",
        inputSchema={
            "type": "object",
            "properties": {
                "bankId": {"type": "string", "description": "Plaid item id of the bank."},
                "accessToken": {"type": "string", "description": "Plaid access token for the item."},
            },
            "required": ["bankId", "accessToken"],
        },
    ),
    Tool(
        name="ask_assistant",
        description="Ask a natural-language question about spending. Keeps per-session conversation history.",
        inputSchema={
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "The question."},
                "sessionId": {"type": "string", "description": "Conversation session id.", "default": "default"},
            },
            "required": ["message"],
        },
    ),
    Tool(
        name="get_widget_data",
        description="Compute data for a dashboard widget (topSpenders, spendingTrend, periodComparison, "
                    "largestTransactions, recurringSubscriptions).",
        inputSchema={
            "type": "object",
            "properties": {
                "widgetId": {"type": "string"},
                "type": {"type": "string"},
                "visualization": {"type": "string"},
                "config": {"type": "object"},
            },
            "required": ["type", "visualization"],
        },
    ),
]


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [*SERVER_TOOLS, *get_registry().tools]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    user_id = get_settings().user_id
    registry = get_registry()

    if registry.has_tool(name):
        result = await asyncio.to_thread(registry.execute, user_id, name, arguments)
        return _text(result)

    elif name == "sync_transactions":
        engine = get_sync_engine()
        result = await engine.sync(user_id, arguments["bankId"], arguments["accessToken"])
        return _text(result)

    elif name == "ask_assistant":
        assistant = get_assistant()
        result = await assistant.query(user_id, arguments.get("sessionId") or "default", arguments["message"])
        return _text(result)

    elif name == "get_widget_data":
        widget_type = arguments.get("type", "")
        config = apply_widget_defaults(widget_type, arguments.get("config") or {})
        validate_widget(widget_type, arguments.get("visualization", ""), config)
        service = WidgetDataService(registry.engine)
        return _text(service.get_widget_data(user_id, {**arguments, "config": config}))

    else:
        raise ValueError(f"Unknown tool: {name}")


# ============================================================================
# Main
# ============================================================================

def main() -> None:
    """Run the MCP server."""
    from mcp.server.stdio import stdio_server

    configure_logging(get_settings().log_level)
    purged = get_db().purge_expired_messages()
    if purged:
        log.info("purged %d expired assistant messages", purged)

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(run())


if __name__ == "__main__":
    main()
