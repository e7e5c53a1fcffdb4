import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .auth_routes import router as auth_router
from .logging_config import configure_logging
from .progress_routes import router as progress_router
from .runtime import StudyhallRuntime, get_runtime, shutdown_runtime, start_runtime


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    runtime = await start_runtime()
    state = runtime.sync.get_state()
    logger.info("Studyhall starting; signed in: %s", state.user_id is not None)
    try:
        yield
    finally:
        await shutdown_runtime()


app = FastAPI(title="Studyhall Client Core", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(progress_router)


@app.get("/healthz")
def health(runtime: StudyhallRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    return {"status": "ok", "auth_ready": runtime.sync.get_state().is_ready}


@app.get("/healthz/database")
def database_health(runtime: StudyhallRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    try:
        with runtime.engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"status": "ok", "dialect": runtime.engine.dialect.name}
