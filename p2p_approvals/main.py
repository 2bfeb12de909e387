from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging

from p2p_approvals.config import settings
from p2p_approvals.database import db
from p2p_approvals.api import approvals, delegations

# Setup Logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    db.connect()
    yield
    db.close()

app = FastAPI(
    title="P2P Approvals API",
    description="Approval workflow for purchase orders and vendor bills",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS Config
origins = [
    "http://localhost:3000",
    "http://localhost:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Router Registration
app.include_router(approvals.router)
app.include_router(delegations.router)

# Health Check
@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT}

if __name__ == "__main__":
    uvicorn.run("p2p_approvals.main:app", host="0.0.0.0", port=8000, reload=True)
