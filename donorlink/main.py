"""
Main application entry point.

Initializes FastAPI app, configures middleware, wraps it in the Socket.IO
ASGI app and registers all API routers from views.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import socketio
import time

from .core.config import settings
from .db import create_tables

# Import Socket.IO
from .services.socketio_manager import sio
from .services.redis_service import redis_service
from .services.location_watcher import location_watcher

# Import all routers from views
from .views import (
    health_router,
    donations_router,
    locations_router,
    blood_requests_router,
    donors_router,
    donation_history_router,
    notifications_router,
)

# Create tables with retry logic
max_retries = 5
retry_delay = 2

for attempt in range(max_retries):
    try:
        create_tables()
        print("✓ Database tables created successfully")
        break
    except Exception as e:
        if attempt < max_retries - 1:
            print(f"⚠ Database connection attempt {attempt + 1} failed, retrying in {retry_delay}s...")
            time.sleep(retry_delay)
        else:
            print(f"✗ Failed to connect to database after {max_retries} attempts")
            raise

# Initialize FastAPI application
app = FastAPI(
    title="DonorLink API",
    version="0.1.0",
    description="Blood donation coordination - requests, donor responses, live map and donation confirmation"
)

# Wrap FastAPI with Socket.IO
socket_app = socketio.ASGIApp(sio, app, socketio_path='/socket.io')

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router)
app.include_router(donations_router)
app.include_router(locations_router)
app.include_router(blood_requests_router)
app.include_router(donors_router)
app.include_router(donation_history_router)
app.include_router(notifications_router)

# Application startup/shutdown events
@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    redis_status = "Connected"
    try:
        await redis_service.connect()
    except Exception as e:
        # location inserts are not published without Redis; the API still serves
        redis_status = f"Unavailable ({e})"

    if settings.watcher_enabled:
        location_watcher.start()

    print("=" * 60)
    print("🩸 DonorLink Started")
    print("=" * 60)
    print(f"🌐 Environment: {settings.app_env}")
    print(f"📍 API Docs: http://localhost:8000/docs")
    print(f"🔌 Socket.IO: ws://localhost:8000/socket.io")
    print(f"📡 Redis: {redis_status}")
    print(f"👀 Location watcher: {'Running' if settings.watcher_enabled else 'Disabled'}")
    print("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown."""
    try:
        await location_watcher.stop()
        await redis_service.disconnect()
        print("=" * 60)
        print("👋 DonorLink Shutting Down")
        print("=" * 60)
    except Exception as e:
        print(f"❌ Error during shutdown: {e}")
