"""FastAPI application for Steward."""

import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from steward.config import settings
from steward.db.sqlite import db
from steward.errors import ValidationError
from steward.models import AgentResponse, QueryRequest, Receipt, ReceiptCreate
from steward.services.agent import QueryDispatchEngine
from steward.services.cache import ResponseCache

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Steward",
    description="Receipt-tracking expense assistant with a natural language query agent",
    version="0.1.0",
)

# CORS for Next.js frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    """Create the response cache and query engine."""
    settings.ensure_directories()
    cache = ResponseCache()
    cache.start_sweeper()
    app.state.cache = cache
    app.state.engine = QueryDispatchEngine(cache=cache)


@app.on_event("shutdown")
async def shutdown():
    """Stop the cache sweep task."""
    app.state.cache.dispose()


def get_engine(request: Request) -> QueryDispatchEngine:
    return request.app.state.engine


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identify the caller. Authentication itself happens upstream."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


@app.get("/health")
async def health_check(request: Request, x_user_id: str | None = Header(default=None)):
    """Health check endpoint. The receipt count is reported only for an identified caller."""
    body = {"status": "healthy", "cache": request.app.state.cache.get_health()}
    if x_user_id:
        body["receipt_count"] = db.get_receipt_count(x_user_id)
    return body


# ==================== AGENT ENDPOINTS ====================


@app.post("/agent/query", response_model=AgentResponse)
async def agent_query(
    request: QueryRequest,
    user_id: str = Depends(get_user_id),
    engine: QueryDispatchEngine = Depends(get_engine),
):
    """Answer a spending question, optionally as a newline-delimited JSON stream."""
    try:
        result = await engine.handle(
            request.query, user_id, streaming=request.streaming, reasoning=request.reasoning
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if request.streaming:

        async def lines():
            async for event in result:
                yield event.to_line()

        return StreamingResponse(lines(), media_type="text/plain")
    return result


@app.get("/agent/query")
async def agent_query_action(
    action: str,
    user_id: str = Depends(get_user_id),
    engine: QueryDispatchEngine = Depends(get_engine),
):
    """Cache maintenance actions for the calling user."""
    if action == "cache-stats":
        return {"stats": engine.cache_stats()}
    if action == "clear-cache":
        engine.clear_user_cache(user_id)
        return {"message": "Cache cleared"}
    raise HTTPException(status_code=400, detail=f"Unknown action: {action}")


# ==================== RECEIPT ENDPOINTS ====================


@app.post("/receipts", response_model=Receipt)
async def add_receipt(receipt: ReceiptCreate, user_id: str = Depends(get_user_id)):
    """Store a receipt for the calling user."""
    stored = Receipt(user_id=user_id, **receipt.model_dump())
    db.add_receipt(stored)
    return stored


@app.get("/receipts", response_model=list[Receipt])
async def get_receipts(
    start_date: str | None = None,
    end_date: str | None = None,
    merchant: str | None = None,
    limit: int = 100,
    user_id: str = Depends(get_user_id),
):
    """Get the calling user's receipts with optional filters."""
    from datetime import date as date_type

    start = date_type.fromisoformat(start_date) if start_date else None
    end = date_type.fromisoformat(end_date) if end_date else None
    return db.get_receipts(user_id, start_date=start, end_date=end, merchant=merchant, limit=limit)


if __name__ == "__main__":
    import uvicorn

    settings.log_config()
    uvicorn.run(
        "steward.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.dev_mode,
    )
