from fastapi import FastAPI, Depends, HTTPException, Query, Request, Response
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import List
from sqlalchemy.orm import Session
from rq import Queue
from redis import Redis
import asyncio
import json
import logging
import os

import uvicorn

import storage
from database import Base, engine, SessionLocal, get_db
from errors import InvalidRunStateError, NotFoundError, StorageError
from logging_setup import configure_logging
from schemas import (
    TestConfigurationCreate,
    TestConfigurationOut,
    TestConfigurationUpdate,
    TestRunCreate,
    TestRunOut,
    TestRunUpdate,
    format_validation_error,
)

configure_logging()
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Healthcare Load Test Wizard")

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
redis_conn = Redis.from_url(REDIS_URL, decode_responses=True)
rq_queue = Queue("load-tests", connection=redis_conn)
redis_sub = redis_conn

CONFIG_NOT_FOUND = "Test configuration not found"
RUN_NOT_FOUND = "Test run not found"


def get_queue() -> Queue:
    return rq_queue


# ---- error translation ----


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    details = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")),
            "message": err.get("msg", "invalid value"),
        }
        for err in errors
    ]
    return JSONResponse(status_code=400, content={"error": format_validation_error(errors), "details": details})


@app.exception_handler(InvalidRunStateError)
async def invalid_run_state_handler(request: Request, exc: InvalidRunStateError):
    return JSONResponse(status_code=400, content={"error": exc.message})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": exc.message})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.get("/health")
def health():
    return {"status": "ok"}


# ---- test configurations ----


@app.get("/api/test-configurations", response_model=List[TestConfigurationOut])
def list_configurations(db: Session = Depends(get_db)):
    return storage.list_configurations(db)


@app.get("/api/test-configurations/{config_id}", response_model=TestConfigurationOut)
def get_configuration(config_id: str, db: Session = Depends(get_db)):
    config = storage.get_configuration(db, config_id)
    if not config:
        raise HTTPException(status_code=404, detail=CONFIG_NOT_FOUND)
    return config


@app.post("/api/test-configurations", response_model=TestConfigurationOut, status_code=201)
def create_configuration(payload: TestConfigurationCreate, db: Session = Depends(get_db)):
    return storage.create_configuration(db, payload)


@app.put("/api/test-configurations/{config_id}", response_model=TestConfigurationOut)
def update_configuration(config_id: str, payload: TestConfigurationUpdate, db: Session = Depends(get_db)):
    config = storage.update_configuration(db, config_id, payload.changes())
    if not config:
        raise HTTPException(status_code=404, detail=CONFIG_NOT_FOUND)
    return config


@app.delete("/api/test-configurations/{config_id}", status_code=204)
def delete_configuration(config_id: str, db: Session = Depends(get_db)):
    # idempotent: an unknown id is already "deleted"
    storage.delete_configuration(db, config_id)
    return Response(status_code=204)


@app.get("/api/test-configurations/{config_id}/runs", response_model=List[TestRunOut])
def list_configuration_runs(config_id: str, db: Session = Depends(get_db)):
    return storage.list_runs_for_configuration(db, config_id)


@app.post("/api/test-configurations/{config_id}/trigger", response_model=TestRunOut, status_code=202)
def trigger_run(config_id: str, db: Session = Depends(get_db), queue: Queue = Depends(get_queue)):
    """
    Create a pending run and hand it to the worker (tasks.simulate_run_job).
    Clients poll GET /api/test-runs/{id} or open WS /ws/run/{id} for progress.
    """
    run = storage.create_run(db, TestRunCreate(test_configuration_id=config_id))

    queue.enqueue("tasks.simulate_run_job", run.id, job_timeout=60 * 60)
    logger.info("queued simulated run %s", run.id)
    return run


# ---- test runs ----


@app.get("/api/test-runs", response_model=List[TestRunOut])
def list_runs(limit: int | None = Query(default=None, ge=1), db: Session = Depends(get_db)):
    return storage.list_runs(db, limit)


@app.get("/api/test-runs/{run_id}", response_model=TestRunOut)
def get_run(run_id: str, db: Session = Depends(get_db)):
    run = storage.get_run(db, run_id)
    if not run:
        raise HTTPException(status_code=404, detail=RUN_NOT_FOUND)
    return run


@app.post("/api/test-runs", response_model=TestRunOut, status_code=201)
def create_run(payload: TestRunCreate, db: Session = Depends(get_db)):
    return storage.create_run(db, payload)


@app.patch("/api/test-runs/{run_id}", response_model=TestRunOut)
def update_run(run_id: str, payload: TestRunUpdate, db: Session = Depends(get_db)):
    run = storage.update_run(db, run_id, payload.changes())
    if not run:
        raise HTTPException(status_code=404, detail=RUN_NOT_FOUND)
    return run


@app.websocket("/ws/run/{run_id}")
async def ws_run_updates(ws: WebSocket, run_id: str):
    await ws.accept()
    channel = f"run:{run_id}"
    pubsub = None
    disconnected = False

    try:
        # subscribe before the snapshot so an event published in between is still relayed
        pubsub = redis_sub.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(channel)
        loop = asyncio.get_running_loop()

        # On connect, send the current DB snapshot so clients that connect late catch up
        db = SessionLocal()
        try:
            run = storage.get_run(db, run_id)
            if not run:
                await ws.send_json({"type": "error", "message": RUN_NOT_FOUND})
                return
            snapshot = json.loads(TestRunOut.model_validate(run).model_dump_json(by_alias=True))
        finally:
            db.close()
        await ws.send_json({"type": "snapshot", "run_id": run_id, "run": snapshot})
        if snapshot["status"] in ("completed", "failed"):
            return

        # Poll pubsub.get_message() in a thread so it doesn't block the event loop.
        while True:
            msg = await loop.run_in_executor(None, lambda: pubsub.get_message(timeout=1.0))
            if msg and msg.get("data"):
                # payload is JSON from tasks.publish; forward as-is
                await ws.send_text(msg["data"])
                if json.loads(msg["data"]).get("type") in ("done", "error"):
                    break
            await asyncio.sleep(0.01)

    except WebSocketDisconnect:
        disconnected = True
    except StorageError:
        logger.exception("could not load run %s for websocket", run_id)
        await ws.send_json({"type": "error", "message": "Internal server error"})
    finally:
        if pubsub is not None:
            pubsub.unsubscribe(channel)
            pubsub.close()
        if not disconnected:
            await ws.close()


def main():
    uvicorn.run(
        "api_main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
