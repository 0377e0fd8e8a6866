import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import config
from database import db, ensure_indexes, test_connection
from routers import bookloans, books, reports, returns, users, wishlist
from utils.member_ids import sync_member_counter

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await test_connection()
    await ensure_indexes(db)
    last = await sync_member_counter(db)
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    logger.info("Library API ready (environment=%s, last member number=%d)", config.ENVIRONMENT, last)
    yield


app = FastAPI(title="Digital Library Management System", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"error": "Invalid request"})
    first = errors[0]
    message = first.get("msg", "Invalid request")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    else:
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "form"))
        if field:
            message = f"{field}: {message}"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(books.router)
app.include_router(bookloans.router)
app.include_router(returns.router)
app.include_router(reports.router)
app.include_router(wishlist.router)

app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")


@app.get("/config")
def get_config():
    return {"environment": config.ENVIRONMENT, "finePerDay": config.FINE_PER_DAY,
            "loanDurationDays": config.LOAN_DURATION_DAYS}
