"""FastAPI application factory for the manual job trigger."""

import logging
import secrets
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query
from fastapi.responses import JSONResponse, PlainTextResponse

from zoo_babies.config import get_default_config
from zoo_babies.ingestion.jobs import JobResult, UnknownJobError, parse_job_name, run_job

logger = logging.getLogger(__name__)

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

JobRunner = Callable[..., Awaitable[JobResult]]


def get_job_runner() -> JobRunner:
    """Dependency returning the coroutine that runs a job by name."""
    return run_job


def get_run_token() -> str | None:
    """Dependency returning the shared secret for manual runs (RUN_TOKEN)."""
    return get_default_config().run_token


def token_matches(supplied: str | None, expected: str | None) -> bool:
    """Constant-time token check; always False when no token is configured."""
    if not supplied or not expected:
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Zoo Babies",
        description="Manual trigger for the zoo babies crawler jobs",
        version="0.1.0",
    )

    @app.get("/", response_class=PlainTextResponse)
    async def health() -> str:
        return "ok"

    @app.get("/run", response_model=None)
    async def trigger(
        runner: Annotated[JobRunner, Depends(get_job_runner)],
        expected_token: Annotated[str | None, Depends(get_run_token)],
        job: Annotated[str, Query()] = "",
        token: Annotated[str, Query()] = "",
    ) -> Any:
        if not token_matches(token, expected_token):
            return PlainTextResponse("forbidden", status_code=403)

        try:
            name = parse_job_name(job)
        except UnknownJobError:
            return PlainTextResponse("bad job", status_code=400)

        try:
            await runner(name)
        except Exception as e:
            logger.exception(f"Manual run of job '{name.value}' failed")
            return JSONResponse({"ok": False, "job": name.value, "error": str(e)}, status_code=500)

        return {"ok": True, "job": name.value}

    return app


# Application instance
app = create_app()
