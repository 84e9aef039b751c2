import structlog
from fastapi import FastAPI

from bringin_checkout.config import ENVIRONMENT
from bringin_checkout.logging_config import setup_logging
from bringin_checkout.routes import get_verification_handler, router
from bringin_checkout.scheduler import start_scheduler, stop_scheduler

setup_logging()
logger = structlog.get_logger()

app = FastAPI(title="Bringin Checkout Service")

app.include_router(router)

scheduler = None


@app.on_event("startup")
async def startup_event():
    global scheduler
    logger.info("startup", environment=ENVIRONMENT)
    handler = get_verification_handler()
    scheduler = start_scheduler(ENVIRONMENT, store=handler.store, handler=handler)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("shutdown")
    stop_scheduler(scheduler)


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": ENVIRONMENT,
        "scheduler": "running" if scheduler and scheduler.running else "stopped",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bringin_checkout.main:app",
        host="0.0.0.0",
        port=8000,
        reload=ENVIRONMENT == "development",
    )
