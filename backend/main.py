from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from api.orders import router as orders_router
from api.cart import router as cart_router
from api.websocket import router as websocket_router
from core.database import engine, Base
from core.redis_client import test_connection
from config import settings
import logging
# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Order Sync API",
    description="Order lifecycle, kitchen tickets and real-time order fan-out",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(orders_router, prefix="/api/v1", tags=["orders"])
app.include_router(cart_router, prefix="/api/v1", tags=["cart"])
app.include_router(websocket_router, prefix="/api/v1", tags=["websocket"])

# Create tables
Base.metadata.create_all(bind=engine)

@app.get("/")
async def root():
    return {"message": "Order Sync Backend Running"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": "1.0.0", "redis": test_connection()}
