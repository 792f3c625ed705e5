import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from hlsfy import __version__, telemetry
from hlsfy.check_process import IdleWatchdog, WatchdogTimer
from hlsfy.config import Settings, get_settings
from hlsfy.database import init_db, make_engine, make_session_factory
from hlsfy.errors import JobNotFound, ResubmitRejected
from hlsfy.log import configure_logging
from hlsfy.schemas import ConversionRequest, JobResponse, SubmitResponse
from hlsfy.store import JobStore
from hlsfy.tasks import JobQueue


@dataclass
class AppContext:
    """Everything the HTTP layer and the idle check share, built once at startup."""

    settings: Settings
    store: JobStore
    queue: JobQueue
    watchdog: IdleWatchdog
    timer: WatchdogTimer

    @classmethod
    def from_settings(cls, settings: Settings, runner=None, terminate=None) -> "AppContext":
        engine = make_engine(settings.database_url)
        init_db(engine)
        store = JobStore(make_session_factory(engine))
        queue = JobQueue(store, settings, runner=runner)
        watchdog = IdleWatchdog(queue, settings, terminate) if terminate else IdleWatchdog(queue, settings)
        return cls(settings, store, queue, watchdog, WatchdogTimer(watchdog, settings.check_interval))

    def start(self):
        self.queue.start()
        self.timer.start()

    def stop(self):
        self.timer.stop()
        self.queue.shutdown(wait=False)


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p != "body"]
    return ".".join(parts) or "body"


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.context is None:
            app.state.context = AppContext.from_settings(get_settings())
        app.state.context.start()
        yield
        app.state.context.stop()

    app = FastAPI(title="hlsfy", version=__version__, lifespan=lifespan)
    app.state.context = context

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        """Report only the first offending field."""
        first = exc.errors()[0] if exc.errors() else {"loc": ("body",), "msg": "Invalid params"}
        return JSONResponse(
            status_code=400,
            content={"detail": f"{_field_name(first.get('loc', ()))}: {first.get('msg', 'invalid')}"},
        )

    def queue_of(request: Request) -> JobQueue:
        return request.app.state.context.queue

    @app.post("/", response_model=SubmitResponse)
    async def submit_job(params: ConversionRequest, request: Request):
        """Persist the job as pending and queue it; processing happens in the background."""
        try:
            job = queue_of(request).submit(params)
        except JobNotFound as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ResubmitRejected as e:
            raise HTTPException(status_code=409, detail=str(e))
        return SubmitResponse(id=job.id, status=job.status, source=job.source, message="Added to queue")

    @app.get("/", response_model=List[JobResponse])
    async def list_jobs(request: Request, limit: int = Query(100, ge=0)):
        """``limit=0`` lists every job."""
        try:
            jobs = queue_of(request).list_jobs(limit or None)
        except SQLAlchemyError:
            raise HTTPException(status_code=404, detail="Jobs not found")
        return [JobResponse.model_validate(job, from_attributes=True) for job in jobs]

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    @app.get("/{job_id}", response_model=JobResponse)
    async def get_job(job_id: str, request: Request):
        # a non-numeric id names no job
        job = queue_of(request).get_job(int(job_id)) if job_id.isdigit() else None
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return JobResponse.model_validate(job, from_attributes=True)

    return app


def build_server(settings: Settings, runner=None) -> uvicorn.Server:
    """A uvicorn server whose idle watchdog stops the serve loop instead of signalling the process."""
    context = AppContext.from_settings(settings, runner=runner)
    server = uvicorn.Server(uvicorn.Config(create_app(context), host=settings.host, port=settings.port))

    def stop_server():
        server.should_exit = True

    context.watchdog.terminate = stop_server
    return server


def run() -> int:
    settings = get_settings()
    configure_logging(settings.log_level)
    telemetry.init_telemetry(settings.sentry_dsn, settings.environment)
    build_server(settings).run()
    return 0


if __name__ == "__main__":
    sys.exit(run())
