import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .auth import create_access_token, current_user, hash_password, optional_user, verify_password
from .config import AppSettings, load_settings
from .db import Database, utc_now
from .errors import AdapterFailure
from .exa import ExaClient
from .firecrawl import FirecrawlClient
from .llm import ChatModelClient
from .orchestrator import ChatTurn, TranscriptRecorder, build_system_prompt
from .poller import JobPoller
from .schemas import ChatRequest, Credentials
from .serper import SerperClient
from .skyvern import SkyvernClient
from .tools import ToolClients, ToolDispatcher, build_registry
from .weather import WeatherClient


logger = logging.getLogger("uvicorn.error")

router = APIRouter()


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_llm_client(request: Request) -> ChatModelClient:
    return request.app.state.llm_client


def get_dispatcher(request: Request) -> ToolDispatcher:
    return request.app.state.dispatcher


def get_tool_clients(request: Request) -> ToolClients:
    return request.app.state.tool_clients


def get_skyvern_client(request: Request) -> SkyvernClient:
    return request.app.state.skyvern_client


def get_recorder(request: Request) -> TranscriptRecorder:
    return request.app.state.recorder


def sse_format(event: dict) -> str:
    return f"data: {json.dumps(event)}\n\n"


def build_tool_clients(settings: AppSettings) -> ToolClients:
    timeout = settings.vendor_timeout_s
    poller = JobPoller(settings.polling.max_attempts, settings.polling.interval_s)
    return ToolClients(
        serper=SerperClient(settings.serper_api_key, settings.serper_base_url, timeout=timeout),
        exa=ExaClient(settings.exa_api_key, settings.exa_base_url, timeout=timeout),
        firecrawl=FirecrawlClient(
            settings.firecrawl_api_key, settings.firecrawl_base_url, poller=poller, timeout=timeout
        ),
        weather=WeatherClient(settings.weather_base_url, timeout=timeout),
    )


def _issue_token(settings: AppSettings, user: Dict[str, Any]) -> Dict[str, Any]:
    if not settings.auth_secret:
        raise HTTPException(status_code=500, detail="AUTH_SECRET is not configured.")
    token = create_access_token(user["id"], settings.auth_secret, settings.token_ttl_minutes)
    return {"user": {"id": user["id"], "email": user["email"]}, "token": token}


@router.post("/api/auth/register")
async def register(
    payload: Credentials,
    settings: AppSettings = Depends(get_settings),
    db: Database = Depends(get_db),
):
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required.")
    if await db.get_user_by_email(email):
        raise HTTPException(status_code=409, detail="User already exists.")
    user = await db.create_user(email, hash_password(payload.password))
    logger.info("Registered user %s", user["id"])
    return _issue_token(settings, user)


@router.post("/api/auth/login")
async def login(
    payload: Credentials,
    settings: AppSettings = Depends(get_settings),
    db: Database = Depends(get_db),
):
    user = await db.get_user_by_email(payload.email.strip().lower())
    if not user or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    return _issue_token(settings, user)


@router.post("/api/chat")
async def chat(
    payload: ChatRequest,
    user: dict = Depends(current_user),
    settings: AppSettings = Depends(get_settings),
    db: Database = Depends(get_db),
    llm_client: ChatModelClient = Depends(get_llm_client),
    dispatcher: ToolDispatcher = Depends(get_dispatcher),
    recorder: TranscriptRecorder = Depends(get_recorder),
):
    if not payload.id:
        raise HTTPException(status_code=404, detail="Chat id is required.")
    existing = await db.get_chat(payload.id)
    if existing and existing["user_id"] != user["id"]:
        raise HTTPException(status_code=401, detail="Unauthorized")

    turn = ChatTurn(
        chat_id=payload.id,
        user_id=user["id"],
        messages=payload.messages,
        llm=llm_client,
        dispatcher=dispatcher,
        model_id=settings.chat_endpoint.model_id,
        system_prompt=build_system_prompt(settings.assistant_name, dispatcher.registry),
        temperature=settings.temperature,
        max_tokens=settings.max_output_tokens,
        max_tool_steps=settings.max_tool_steps,
        persist=recorder,
    )

    async def event_generator():
        async for event in turn.stream():
            yield sse_format(event)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.delete("/api/chat")
async def delete_chat(
    chat_id: Optional[str] = Query(default=None, alias="id"),
    user: Optional[dict] = Depends(optional_user),
    db: Database = Depends(get_db),
):
    if not chat_id:
        raise HTTPException(status_code=404, detail="Not Found")
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    chat = await db.get_chat(chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    if chat["user_id"] != user["id"]:
        raise HTTPException(status_code=401, detail="Unauthorized")
    await db.delete_chat(chat_id)
    return {"ok": True, "message": "Chat deleted"}


@router.get("/api/chat/{chat_id}")
async def get_chat(chat_id: str, user: dict = Depends(current_user), db: Database = Depends(get_db)):
    chat = await db.get_chat(chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")
    if chat["user_id"] != user["id"]:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return {"chat": chat}


@router.get("/api/history")
async def history(limit: int = 200, user: dict = Depends(current_user), db: Database = Depends(get_db)):
    return {"chats": await db.list_chats(user["id"], limit=limit)}


@router.get("/api/tools")
async def list_tools(dispatcher: ToolDispatcher = Depends(get_dispatcher)):
    registry = dispatcher.registry
    return {
        "tools": registry.to_openai_tools(),
        "disabled": [spec.name for spec in registry if spec.disabled],
    }


@router.get("/api/firecrawl/{kind}/{job_id}")
async def firecrawl_job_status(
    kind: str,
    job_id: str,
    user: dict = Depends(current_user),
    tool_clients: ToolClients = Depends(get_tool_clients),
):
    if kind not in ("crawl", "extract"):
        raise HTTPException(status_code=404, detail="Unknown job kind")
    firecrawl = tool_clients.firecrawl
    fetch = firecrawl.crawl_status if kind == "crawl" else firecrawl.extract_status
    try:
        return await fetch(job_id)
    except AdapterFailure as exc:
        logger.warning("Firecrawl %s status for %s failed: %s", kind, job_id, exc)
        return JSONResponse({"error": f"Failed to fetch {kind} status"}, status_code=500)


@router.get("/api/skyvern/tasks/{task_id}")
async def skyvern_task(
    task_id: str,
    user: dict = Depends(current_user),
    skyvern: SkyvernClient = Depends(get_skyvern_client),
):
    try:
        return await skyvern.get_task(task_id)
    except AdapterFailure as exc:
        logger.warning("Skyvern task %s lookup failed: %s", task_id, exc)
        return JSONResponse({"error": "Failed to fetch task details"}, status_code=500)


@router.get("/api/skyvern/tasks/{task_id}/steps")
async def skyvern_task_steps(
    task_id: str,
    user: dict = Depends(current_user),
    skyvern: SkyvernClient = Depends(get_skyvern_client),
):
    try:
        return await skyvern.get_task_steps(task_id)
    except AdapterFailure as exc:
        logger.warning("Skyvern steps for %s failed: %s", task_id, exc)
        return JSONResponse({"error": "Failed to fetch task steps"}, status_code=500)


@router.post("/api/skyvern/tasks/{task_id}/cancel")
async def skyvern_cancel_task(
    task_id: str,
    user: dict = Depends(current_user),
    skyvern: SkyvernClient = Depends(get_skyvern_client),
):
    try:
        return await skyvern.cancel_task(task_id)
    except AdapterFailure as exc:
        logger.warning("Skyvern cancel for %s failed: %s", task_id, exc)
        return JSONResponse({"error": "Failed to cancel task"}, status_code=500)


@router.get("/api/test")
async def system_check(
    user: Optional[dict] = Depends(optional_user),
    settings: AppSettings = Depends(get_settings),
    db: Database = Depends(get_db),
):
    if user is None:
        return {"status": "error", "message": "Not authenticated", "timestamp": utc_now()}
    try:
        chat_count = await db.count_chats(user["id"])
    except Exception as exc:
        logger.exception("System check failed")
        return JSONResponse(
            {"status": "error", "message": str(exc), "timestamp": utc_now()},
            status_code=500,
        )
    return {
        "status": "success",
        "message": "All systems operational",
        "user": {"id": user["id"], "email": user["email"]},
        "chatCount": chat_count,
        "timestamp": utc_now(),
        "environment": {
            "hasAuthSecret": bool(settings.auth_secret),
            "hasModelKey": bool(settings.chat_endpoint.api_key),
            "hasSerperKey": bool(settings.serper_api_key),
            "hasExaKey": bool(settings.exa_api_key),
            "hasFirecrawlKey": bool(settings.firecrawl_api_key),
            "hasSkyvernKey": bool(settings.skyvern_api_key),
        },
    }


def create_app(
    settings: AppSettings,
    *,
    db: Optional[Database] = None,
    llm_client: Optional[ChatModelClient] = None,
    tool_clients: Optional[ToolClients] = None,
    skyvern_client: Optional[SkyvernClient] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.db.init()
        try:
            yield
        finally:
            await app.state.llm_client.close()
            await app.state.tool_clients.close()
            await app.state.skyvern_client.close()

    app = FastAPI(title="Promptmack Chat Backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db or Database(settings.database_path)
    app.state.llm_client = llm_client or ChatModelClient(
        settings.chat_endpoint.base_url,
        api_key=settings.chat_endpoint.api_key,
        max_output_tokens=settings.max_output_tokens,
    )
    app.state.tool_clients = tool_clients or build_tool_clients(settings)
    app.state.skyvern_client = skyvern_client or SkyvernClient(
        settings.skyvern_api_key, settings.skyvern_base_url, timeout=settings.vendor_timeout_s
    )
    app.state.dispatcher = ToolDispatcher(build_registry(app.state.tool_clients))
    app.state.recorder = TranscriptRecorder(app.state.db)
    app.include_router(router)
    return app


app = create_app(load_settings())


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    try:
        uvicorn.run(
            "promptmack.main:app",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level,
        )
    except KeyboardInterrupt:
        pass
