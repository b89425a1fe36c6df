import os
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import cart
import database
import products
import users
from database import get_db

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Connection errors propagate and abort startup
    db = database.connect()
    users.ensure_admin(db)
    logger.info("startup_complete")
    yield
    database.close()


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials="*" not in ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", method=request.method, path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(users.router)
app.include_router(products.router)
app.include_router(cart.router)


# Routes
@app.get("/")
def root():
    return {"message": "Storefront API is running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    try:
        collections = sorted(db.list_collection_names())
    except PyMongoError as e:
        logger.warning("database_check_failed", error=str(e))
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {
        "backend": "running",
        "database": "connected",
        "database_name": db.name,
        "collections": collections[:10],
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
