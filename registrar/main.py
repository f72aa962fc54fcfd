import logging
from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .config import configure_logging, settings
from .db import init_db
from .errors import RegistrarError
from .seed import ensure_default_admin, ensure_demo_data
from .services.credits import credit_queue
from .routers import programs, courses, periods, sections, enrollments, classes, users


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    if settings.is_production:
        ensure_default_admin()
    else:
        ensure_demo_data()
    credit_queue.start(settings.credit_queue_workers)
    try:
        yield
    finally:
        credit_queue.drain(timeout=5.0)
        credit_queue.stop()


app = FastAPI(title="Registrar API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RegistrarError)
async def registrar_error_handler(request: Request, exc: RegistrarError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "details": jsonable_encoder(exc.details)},
    )


app.include_router(programs.router)
app.include_router(courses.router)
app.include_router(periods.router)
app.include_router(sections.router)
app.include_router(enrollments.router)
app.include_router(classes.router)
app.include_router(users.router)


@app.get("/")
def root():
    return {"status": "ok", "service": "Registrar API"}


@app.get("/health/queue")
def queue_health():
    return credit_queue.stats()
