"""
HTTP Server for RACV Quote Agent

Handles:
- MCP (streamable HTTP) at /mcp exposing the four quote tools
- Health check with the active browser session count
- Debug endpoints over the JSONL activity log
- Session store reaper lifecycle
"""

import json
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations

import langwatch
from racv_quote.activity_logger import get_logger
from racv_quote.automation.session_manager import get_session_store
from racv_quote.tools.quote import get_quote_tools

# Load environment variables
load_dotenv()

# Initialize LangWatch
langwatch.api_key = os.getenv("LANGWATCH_API_KEY")


# =========================================================================
# MCP tools
# =========================================================================

mcp = FastMCP("racv-quote")


def _tool_result(result: str) -> str:
    """Surface error payloads as MCP tool errors."""
    payload = json.loads(result)
    if isinstance(payload, dict) and "error" in payload:
        raise ToolError(result)
    return result


@mcp.tool(annotations=ToolAnnotations(title="Start Quote", openWorldHint=True))
async def start_quote(
    rego: Optional[str] = None,
    state: Optional[str] = None,
    year: Optional[str] = None,
    make: Optional[str] = None,
    model: Optional[str] = None,
    body_type: Optional[str] = None,
) -> str:
    """Start a new RACV car insurance quote session. Returns a session ID to use
    in subsequent calls. Call this first before any other tools.

    Provide either rego + state (VIC, NSW, QLD, SA, WA, TAS, NT, ACT) OR
    year + make + model + body_type (e.g. 2020 Toyota Corolla SEDAN).
    """
    return _tool_result(await get_quote_tools().start_quote(
        rego=rego, state=state, year=year, make=make, model=model, body_type=body_type
    ))


@mcp.tool(annotations=ToolAnnotations(title="Fill Car Details", openWorldHint=True))
async def fill_car_details(
    session_id: str,
    address: str,
    under_finance: bool,
    purpose: str,
    business_registered: bool,
    cover_start_date: Optional[str] = None,
    email: Optional[str] = None,
) -> str:
    """Fill in car details (overnight address, finance status, purpose, business
    registration) for an active quote session. Call after start_quote.

    purpose is 'Private', 'Business', or 'Private and Business'.
    cover_start_date is DD/MM/YYYY and defaults to today.
    """
    return _tool_result(await get_quote_tools().fill_car_details(
        session_id=session_id,
        address=address,
        under_finance=under_finance,
        purpose=purpose,
        business_registered=business_registered,
        cover_start_date=cover_start_date,
        email=email,
    ))


@mcp.tool(annotations=ToolAnnotations(title="Fill Driver Details", openWorldHint=True))
async def fill_driver_details(
    session_id: str,
    racv_member: bool,
    gender: str,
    age: int,
    licence_age: int,
    accidents_last_5_years: bool,
) -> str:
    """Fill in driver details (membership, gender 'male'/'female', age, age when
    licensed, accidents in the last 5 years) for an active quote session.
    Call after fill_car_details.
    """
    return _tool_result(await get_quote_tools().fill_driver_details(
        session_id=session_id,
        racv_member=racv_member,
        gender=gender,
        age=age,
        licence_age=licence_age,
        accidents_last_5_years=accidents_last_5_years,
    ))


@mcp.tool(annotations=ToolAnnotations(title="Get Quotes", readOnlyHint=True, openWorldHint=True))
async def get_quotes(session_id: str) -> str:
    """Extract the insurance quote results from an active session. Call after
    fill_driver_details. Returns comprehensive and third party quotes with
    yearly/monthly prices.
    """
    return _tool_result(await get_quote_tools().get_quotes(session_id=session_id))


mcp_app = mcp.streamable_http_app()


# =========================================================================
# FastAPI app
# =========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    print("[Server] Starting RACV Quote Server...")
    store = get_session_store()
    store.start()
    async with mcp.session_manager.run():
        print("[Server] MCP endpoint: /mcp")
        yield
    print("[Server] Shutting down...")
    await store.stop()


app = FastAPI(
    title="RACV Quote Server",
    description="MCP server for RACV car insurance quotes",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Mcp-Session-Id"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "activeSessions": get_session_store().active_count()
    }


# =========================================================================
# Debug API Endpoints
# =========================================================================

@app.get("/debug/recent-events")
async def debug_recent_events(limit: int = 50):
    """
    Get the latest logged events across all quote sessions.

    - curl http://localhost:3000/debug/recent-events?limit=20
    """
    events = get_logger().get_recent_events(limit)
    return {"events": events, "total": len(events)}


@app.get("/debug/sessions")
async def debug_sessions(limit: int = 50):
    """List the most recently started quote sessions."""
    sessions = get_logger().get_recent_sessions(limit)
    return {"sessions": sessions, "count": len(sessions)}


@app.get("/debug/session/{session_id}")
async def debug_session(session_id: str):
    """
    Get all events from one quote session.

    Use session_id from the /debug/sessions list.
    """
    logger = get_logger()
    session = logger.find_session(session_id)
    if session is None:
        return {"error": f"Session {session_id} not found"}

    events = logger.read_session(session.get("file", ""))
    return {
        "session_id": session_id,
        "active": session_id in get_session_store(),
        "events": events,
        "count": len(events)
    }


@app.get("/debug/errors")
async def debug_errors(limit: int = 50):
    """Get recent tool errors and step failures, newest first."""
    errors = get_logger().get_errors(limit)
    return {"errors": errors, "count": len(errors)}


@app.get("/debug/tool-stats")
async def debug_tool_stats():
    """Get aggregated tool usage counts."""
    return {"tool_counts": get_logger().get_tool_usage_stats()}


# Mounted last so the routes above take precedence
app.mount("/", mcp_app)


def main():
    """Run the server."""
    import uvicorn
    uvicorn.run(
        "racv_quote.server:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        log_level="info"
    )


if __name__ == "__main__":
    main()
