"""HTTP transport for runs.

``POST /runs`` starts a run and streams its progress events as NDJSON, one
event per line, ending with exactly one ``done`` or ``error`` event. Dropping
the connection cancels the run; ``POST /runs/{run_id}/cancel`` does the same
from another client.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Literal, Optional
import logging
import queue
import re
import threading

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from ragprobe import __version__
from ragprobe.config_schema import AppConfig
from ragprobe.llm.chat_service import ChatCompletionService, LangChainChatService
from ragprobe.pipeline.core import CancelToken, ConfigurationError, EventChannel, ResultStore, RunConfig
from ragprobe.pipeline.core.artifacts import list_runs
from ragprobe.pipeline.runner import RunEngine
from ragprobe.pipeline.stages import cases_from_dicts

logger = logging.getLogger(__name__)

NDJSON = "application/x-ndjson"
RUN_ID_RE = re.compile(r"^[\w-]+$")
POLL_SEC = 0.25


class RunRequest(BaseModel):
    """Per-run overrides on top of the server's AppConfig."""
    model: Optional[str] = None
    source_mode: Optional[Literal["knowledge", "fixed_list"]] = None
    prompts: Optional[Dict[str, Optional[str]]] = None
    counts: Optional[Dict[str, int]] = None
    generation: Optional[Dict[str, Any]] = None
    # fixed-list mode: inline cases win over [io].test_cases
    test_cases: Optional[List[Dict[str, Any]]] = None


def merge_run_request(base: AppConfig, req: RunRequest) -> AppConfig:
    raw = base.model_dump()
    if req.model:
        raw["llm"]["model"] = req.model
    if req.source_mode:
        raw["runtime"]["source_mode"] = req.source_mode
    for section in ("prompts", "counts", "generation"):
        overrides = getattr(req, section)
        if overrides:
            raw[section].update(overrides)
    return AppConfig.model_validate(raw)


class RunRegistry:
    """Cancel tokens of the runs currently executing in this process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Dict[str, CancelToken] = {}

    def add(self, run_id: str, token: CancelToken):
        with self._lock:
            self._active[run_id] = token

    def remove(self, run_id: str):
        with self._lock:
            self._active.pop(run_id, None)

    def get(self, run_id: str) -> Optional[CancelToken]:
        with self._lock:
            return self._active.get(run_id)

    def ids(self) -> List[str]:
        with self._lock:
            return sorted(self._active)


def create_app(
    app_config: Optional[AppConfig] = None,
    service_factory: Optional[Callable[[AppConfig], ChatCompletionService]] = None,
) -> FastAPI:
    base_config = app_config or AppConfig()
    make_service = service_factory or (lambda cfg: LangChainChatService(cfg.llm))
    registry = RunRegistry()

    api = FastAPI(title="ragprobe", version=__version__)
    api.state.config = base_config
    api.state.registry = registry

    def _results_root():
        return RunConfig.from_app(base_config).results_root

    def _start(app_cfg: AppConfig, cases):
        # blocking: config resolution reads files and prepare() creates the run directory
        run_cfg = RunConfig.from_app(app_cfg, test_cases=cases)
        engine = RunEngine.from_config(run_cfg, make_service(app_cfg))
        ctx, store = engine.prepare()
        channel = EventChannel()
        registry.add(ctx.run_id, ctx.cancel)

        def _work():
            try:
                engine.execute(ctx, store, channel)
            finally:
                registry.remove(ctx.run_id)

        threading.Thread(target=_work, name=f"run-{ctx.run_id}", daemon=True).start()
        logger.info("Started run %s (%s, model=%s)", ctx.run_id, run_cfg.source_mode, run_cfg.model)
        return ctx, channel

    @api.post("/runs", summary="Start a run and stream its progress as NDJSON")
    async def start_run(body: RunRequest, request: Request):
        try:
            app_cfg = merge_run_request(base_config, body)
            cases = cases_from_dicts(body.test_cases) if body.test_cases else None
        except (ValidationError, ConfigurationError) as e:
            raise HTTPException(status_code=422, detail=str(e))

        ctx, channel = await run_in_threadpool(_start, app_cfg, cases)

        async def events():
            finished = False
            try:
                while True:
                    if await request.is_disconnected():
                        logger.info("Client disconnected from run %s", ctx.run_id)
                        break
                    try:
                        ev = await run_in_threadpool(channel.get, POLL_SEC)
                    except queue.Empty:
                        continue
                    if ev is None:
                        finished = True
                        break
                    yield ev.to_json() + "\n"
            finally:
                if not finished:
                    channel.close()
                    ctx.cancel.cancel("client disconnected")

        return StreamingResponse(events(), media_type=NDJSON, headers={"X-Run-Id": ctx.run_id})

    @api.post("/runs/{run_id}/cancel", summary="Cancel an active run")
    def cancel_run(run_id: str):
        token = registry.get(run_id)
        if token is None:
            raise HTTPException(status_code=404, detail=f"No active run '{run_id}'")
        token.cancel("cancel requested via API")
        return {"run_id": run_id, "cancelled": True}

    @api.get("/runs", summary="List stored runs, newest first")
    def get_runs():
        return {"runs": list_runs(_results_root()), "active": registry.ids()}

    @api.get("/runs/{run_id}", summary="Stored results of a run")
    def get_run(run_id: str):
        root = _results_root()
        if not RUN_ID_RE.match(run_id) or not (root / run_id).is_dir():
            raise HTTPException(status_code=404, detail=f"Unknown run '{run_id}'")
        store = ResultStore(root / run_id, run_id)
        return {
            "run_id": run_id,
            "manifest": store.load_manifest(),
            "results": store.load_results(),
        }

    return api
