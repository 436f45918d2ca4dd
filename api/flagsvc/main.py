from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flagsvc.config import get_settings
from flagsvc.logging import configure_logging
from flagsvc.metrics import setup_metrics
from flagsvc.routers.flags import router as flags_router
from flagsvc.routers.health import router as health_router
from flagsvc.routers.rules import router as rules_router
from flagsvc.routers.sdk import router as sdk_router

configure_logging(get_settings().log_level)

app = FastAPI(title="Feature Flags Service", version="0.2.0")

# CORS (adjust as needed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health_router, prefix="")
app.include_router(sdk_router, prefix="")
app.include_router(flags_router, prefix="")
app.include_router(rules_router, prefix="")

# Metrics endpoint
setup_metrics(app)
