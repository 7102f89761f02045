import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .errors import TutorError
from .settings import settings
from .store import get_store
from .routers import health
from .routers import admin
from .routers import learner
from .routers import assessment
from .routers import studyplan
from .routers import voice
from .routers import papers

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("prathamlearn")

PAPERS_DIR = Path(settings.papers_dir)
PAPERS_DIR.mkdir(parents=True, exist_ok=True)

app = FastAPI(title="PrathamLearn Tutor API")
app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_origins,
	allow_credentials=False,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(admin.router)
app.include_router(learner.router)
app.include_router(assessment.router)
app.include_router(studyplan.router)
app.include_router(voice.router)
app.include_router(papers.router)

# Generated papers (PDF/HTML) are served as static files
app.mount("/papers", StaticFiles(directory=PAPERS_DIR), name="papers")


@app.middleware("http")
async def log_requests(request: Request, call_next):
	if settings.debug:
		logger.info("%s %s", request.method, request.url.path)
	return await call_next(request)


@app.exception_handler(TutorError)
async def tutor_error_handler(request: Request, exc: TutorError):
	return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
	return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
	first = exc.errors()[0] if exc.errors() else {}
	field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "request"
	return JSONResponse(status_code=400, content={"error": f"invalid {field}: {first.get('msg', 'bad request')}"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
	logger.exception("Unhandled error on %s %s", request.method, request.url.path)
	return JSONResponse(status_code=500, content={"error": "internal error"})


@app.on_event("startup")
async def startup_event():
	# Create tables up front so the first request doesn't pay for it
	get_store()
	logger.info("PrathamLearn API ready (gemini configured: %s)", bool(settings.gemini_api_key))
