from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import research, router
from app.config import settings
from app.errors import QueryValidationError, UrlNotAllowedError
from app.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("corroborate starting")
    yield
    logger.info("corroborate stopped")


app = FastAPI(
    title="Corroborate",
    description="Research orchestration: search, extract, cross-check and report",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QueryValidationError)
@app.exception_handler(UrlNotAllowedError)
async def bad_input_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body", "detail": jsonable_encoder(exc.errors())},
    )


# Routes
app.include_router(research.router)
app.include_router(router.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "corroborate"}
