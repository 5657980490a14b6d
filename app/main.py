import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from app.api import bookings, providers
from app.core import config
from app.core.logger import logger
from app.db.client import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep_task = None
    if config.ENABLE_EXPIRY_SWEEP:
        from app.worker import worker_loop

        init_db()
        sweep_task = asyncio.create_task(worker_loop())
        logger.info("Payment timeout sweep scheduled in-process")
    yield
    if sweep_task:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task


app = FastAPI(title="Setkar Booking", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(bookings.router)
app.include_router(providers.router)


@app.get("/")
async def root():
    return {"message": "Setkar Booking API!"}
