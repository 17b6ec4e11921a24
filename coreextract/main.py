from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from coreextract.api.v1.router import router as v1_router
from coreextract.core.config import settings
from coreextract.core.logging import configure_logging
from coreextract.db import init_db
from coreextract.middleware.request_id import RequestIdMiddleware

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.env == "local":
        init_db()
    yield


app = FastAPI(title="coreextract API", lifespan=lifespan)

# Starlette runs the LAST added middleware FIRST (outermost), so the request id
# is bound before CORS preflight responses are produced.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)


@app.get("/")
def root():
    return {"name": "coreextract API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(v1_router, prefix="/v1")
