import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import init_db
from .errors import DealflowError
from .logconfig import configure_logging
from .routers import admin_deals, buy, downloads, sell

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="Deal Flow API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    init_db()


@app.exception_handler(DealflowError)
def dealflow_error_handler(request: Request, exc: DealflowError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request failed", path=request.url.path, code=exc.code, **exc.context)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})


app.include_router(sell.router, prefix="/api/deals", tags=["sell"])
app.include_router(buy.router, prefix="/api/deals", tags=["buy"])
app.include_router(downloads.router, prefix="/api/deals", tags=["downloads"])
app.include_router(admin_deals.router, prefix="/api/admin/deals", tags=["admin"])


@app.get("/")
def root():
    return {"ok": True, "service": "dealflow-api"}
