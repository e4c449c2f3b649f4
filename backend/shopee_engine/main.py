import asyncio
import logging
import re
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shopee_engine.config import settings
from shopee_engine.routers import flash_sale_scheduler, flash_sales, shopee_auth
from shopee_engine.services.errors import ShopeeEngineError
from shopee_engine.utils.logger import logger

if settings.DEBUG:
    logging.getLogger("shopee_engine").setLevel(logging.DEBUG)

app = FastAPI(
    title="Shopee Flash Sale Engine",
    description="Partner API credential lifecycle and scheduled flash sale copies",
    version="1.0.0",
)


def _cors_origins() -> list:
    origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
    if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
        origins.append(settings.FRONTEND_URL)
    return origins


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def tag_request(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logger.info("[http] %s %s rid=%s", request.method, request.url.path, rid)
    try:
        response = await call_next(request)
    except Exception as exc:
        logger.exception("[http] Unhandled error on %s rid=%s", request.url.path, rid)
        response = JSONResponse(
            {"error": "internal_error", "rid": rid, "message": str(exc), "type": type(exc).__name__},
            status_code=500,
        )
    else:
        logger.info("[http] %s -> %s rid=%s", request.url.path, response.status_code, rid)
    response.headers["X-Request-ID"] = rid
    return response


@app.exception_handler(ShopeeEngineError)
async def shopee_engine_error_handler(request: Request, exc: ShopeeEngineError):
    return JSONResponse(exc.to_dict(), status_code=400)


app.include_router(flash_sale_scheduler.router)
app.include_router(shopee_auth.router)
app.include_router(flash_sales.router)


@app.on_event("startup")
async def startup_event():
    masked_url = re.sub(r"://([^:/]+):([^@]+)@", r"://\1:****@", settings.DATABASE_URL)
    logger.info("Shopee flash sale engine starting, database=%s", masked_url)

    if settings.default_partner_credential is None:
        logger.warning("No default SHOPEE_PARTNER_ID/SHOPEE_PARTNER_KEY; shops need a linked partner account")

    if settings.SCHEDULER_RUN_IN_PROCESS:
        from shopee_engine.workers.flash_sale_sweep_worker import run_sweep_loop

        asyncio.create_task(run_sweep_loop())
        logger.info(
            "Flash sale sweep worker started in-process (every %s seconds)",
            settings.SCHEDULER_POLL_INTERVAL_SECONDS,
        )
    else:
        logger.info("In-process sweep disabled; run the sweep worker or POST /api/flash-sale-scheduler/sweep")


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run("shopee_engine.main:app", host="0.0.0.0", port=8000)
