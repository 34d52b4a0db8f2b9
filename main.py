import logging
import sys
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from routes.admin_routes import router as admin_router
from routes.content_routes import router as content_router
from routes.dependencies import get_scheduled_jobs
from routes.study_routes import router as study_router
from utils.exceptions import StudyForgeError
from utils.settings import ENABLE_SCHEDULED_JOBS

# Configure logging
logger = logging.getLogger(__name__)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
)

load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    jobs = get_scheduled_jobs() if ENABLE_SCHEDULED_JOBS else None
    if jobs is not None:
        jobs.start()
    yield
    if jobs is not None:
        await jobs.stop()


app = FastAPI(title="StudyForge", lifespan=lifespan)


@app.exception_handler(StudyForgeError)
async def studyforge_exception_handler(request: Request, exc: StudyForgeError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "status_code": exc.status_code,
            "context": jsonable_encoder(exc.context),
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(content_router)
app.include_router(study_router)
app.include_router(admin_router)


@app.get("/")
async def root():
    return {"greeting": "Hello!", "message": "Welcome to StudyForge!"}


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
