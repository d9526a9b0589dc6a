from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse, StreamingResponse

from .integrations import tools_integration_status
from .runner import ToolRunner
from .schemas import (
    EventResponse,
    RunAcceptedResponse,
    RunnerStatusResponse,
    RunRequest,
    RuntimeConfigResponse,
    RuntimeConfigUpdateRequest,
    ToolsDirectoryValidationResponse,
)
from .service_container import Services


def _runner_or_404(services: Services, runner_name: str) -> ToolRunner:
    runner = services.runners.get(runner_name)
    if runner is None:
        raise HTTPException(status_code=404, detail="Runner not found")
    return runner


def create_app(services: Services) -> FastAPI:
    app = FastAPI(title="NSCB Desktop Backend", version="0.1.0")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await asyncio.gather(*(runner.shutdown() for runner in services.runners.values()))

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True}

    @app.get("/health/integrations")
    async def health_integrations() -> dict[str, Any]:
        tools_dir = services.nscb.tools_dir
        return tools_integration_status(str(tools_dir) if tools_dir else None, services.settings)

    @app.get("/v1/runtime/config", response_model=RuntimeConfigResponse)
    async def get_runtime_config() -> RuntimeConfigResponse:
        return RuntimeConfigResponse(**services.runtime_config.public_view())

    @app.patch("/v1/runtime/config", response_model=RuntimeConfigResponse)
    async def patch_runtime_config(request: RuntimeConfigUpdateRequest) -> RuntimeConfigResponse:
        if not request.clear_tools_dir and request.tools_dir is not None:
            if not services.nscb.validate_tools_directory(request.tools_dir, services.nscb.exe_name):
                raise HTTPException(status_code=400, detail=f"{services.nscb.exe_name} not found in that directory.")

        updated = services.runtime_config.update(
            tools_dir=request.tools_dir,
            clear_tools_dir=request.clear_tools_dir,
        )
        services.set_tools_directory(updated.tools_dir)
        return RuntimeConfigResponse(**services.runtime_config.public_view())

    @app.get("/v1/runtime/tools-dir/validate", response_model=ToolsDirectoryValidationResponse)
    async def validate_tools_dir(path: str = Query(min_length=1)) -> ToolsDirectoryValidationResponse:
        valid = services.nscb.validate_tools_directory(path, services.nscb.exe_name)
        return ToolsDirectoryValidationResponse(
            path=path,
            valid=valid,
            detail=None if valid else f"{services.nscb.exe_name} not found in the selected directory.",
        )

    @app.get("/v1/runners", response_model=list[RunnerStatusResponse])
    async def list_runners() -> list[RunnerStatusResponse]:
        return [RunnerStatusResponse(**runner.status_view()) for runner in services.runners.values()]

    @app.get("/v1/runners/{runner_name}", response_model=RunnerStatusResponse)
    async def get_runner(runner_name: str) -> RunnerStatusResponse:
        runner = _runner_or_404(services, runner_name)
        return RunnerStatusResponse(**runner.status_view())

    @app.post("/v1/runners/{runner_name}/run", response_model=RunAcceptedResponse, status_code=202)
    async def start_run(runner_name: str, request: RunRequest) -> RunAcceptedResponse:
        runner = _runner_or_404(services, runner_name)
        was_running = runner.is_running()

        # Rejections are published as runner error events; the response only reports acceptance.
        runner.run(request.operation, request.files, request.options.model_dump())

        accepted = not was_running and runner.is_running()
        return RunAcceptedResponse(
            accepted=accepted,
            runner=runner.name,
            operation=request.operation,
            running_operation=runner.current_operation,
        )

    @app.post("/v1/runners/{runner_name}/cancel", response_model=RunnerStatusResponse)
    async def cancel_run(runner_name: str) -> RunnerStatusResponse:
        runner = _runner_or_404(services, runner_name)
        runner.cancel()
        return RunnerStatusResponse(**runner.status_view())

    @app.get("/v1/events", response_model=list[EventResponse])
    async def list_events(
        since_id: int = Query(default=0, ge=0),
        limit: int = Query(default=200, ge=1, le=1000),
    ) -> list[EventResponse]:
        return [EventResponse(**event) for event in services.journal.list_events(after_id=since_id, limit=limit)]

    @app.get("/v1/events/stream")
    async def stream_events(since_id: int = Query(default=0, ge=0)) -> StreamingResponse:
        async def generator() -> Any:
            last_id = since_id
            while True:
                events = services.journal.list_events(after_id=last_id, limit=200)
                if events:
                    for event in events:
                        last_id = int(event["id"])
                        payload = json.dumps(event)
                        yield f"id: {last_id}\n"
                        yield f"event: {event['type']}\n"
                        yield f"data: {payload}\n\n"
                else:
                    yield ": ping\n\n"
                    await asyncio.sleep(0.25)

        return StreamingResponse(generator(), media_type="text/event-stream")

    @app.exception_handler(ValueError)
    async def value_error_handler(_request: Any, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app
