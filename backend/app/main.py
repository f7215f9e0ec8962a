from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from app.api.v1 import convert, status, jobs, health, ws
from app.core.config import settings
from app.core.errors import NotFoundError, ValidationError
from app.core.logging_config import configure_logging, get_logger
from app.worker import orchestrator

configure_logging()
logger = get_logger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

@app.on_event("startup")
def on_startup():
    orchestrator.storage.ensure_dirs()
    logger.info(f"{settings.PROJECT_NAME} backend storing artifacts in {orchestrator.storage.root}")

@app.on_event("shutdown")
async def on_shutdown():
    await orchestrator.shutdown()

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc)})

@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})

@app.get("/")
def read_root():
    return {"message": "Welcome to SimpleShare API"}

app.include_router(convert.router, tags=["convert"])
app.include_router(status.router, tags=["status"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(ws.router, prefix="/ws", tags=["websocket"])

# finished artifacts, read-only
app.mount("/public", StaticFiles(directory=settings.STORAGE_DIR, check_dir=False), name="public")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT)
