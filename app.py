#!/usr/bin/env python3
"""
FastAPI application for the dble pipeline workflow engine
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Import routers
from dble_pipeline.workflows_api import router as workflows_router
from dble_pipeline.timeline_api import router as timeline_router

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,https://dble.io,https://www.dble.io",
    ).split(",")
    if origin.strip()
]

# Initialize FastAPI app
app = FastAPI(title="dble Pipeline Workflow API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(workflows_router)
app.include_router(timeline_router)

# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "dble Pipeline Workflow API", "version": "1.0.0"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
