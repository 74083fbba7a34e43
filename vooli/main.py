from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vooli.api.routes import chats, runs
from vooli.config import settings
from vooli.services import database as db
from vooli.services import logger as log_service
from vooli.services.prompt_store import check_catalog
from vooli.services.run_manager import get_run_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    prompts = check_catalog()
    log_service.log_event(event_type="startup", message="Prompt catalog loaded", prompts=len(prompts))
    yield
    await get_run_manager().shutdown()
    await db.close_pool()


app = FastAPI(
    title="vooli",
    description="Conversational shopping assistant",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chats.router)
app.include_router(runs.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "vooli"}
