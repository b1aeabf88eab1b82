import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from orderentry.api import entry_sessions, order_templates, orders, templates
from orderentry.core.config import settings
from orderentry.core.database import Base, SessionLocal, engine
from orderentry.core.error_handlers import register_error_handlers
from orderentry.services.entry_sessions import entry_sessions as session_manager
from orderentry.services.template_service import TemplateService

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Order Entry API",
    description="Schema-driven purchase order entry: template normalization, grid engine and line-item submission",
    version="0.1.0",
    debug=settings.DEBUG
)

# Configure CORS - MUST be before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins in development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register error handlers
register_error_handlers(app)

# Include routers
app.include_router(templates.router)  # Template source for entry surfaces
app.include_router(order_templates.router)  # Template authoring
app.include_router(entry_sessions.router)  # Mounted entry surfaces
app.include_router(orders.router)  # Submission boundary


@app.on_event("startup")
async def startup_event():
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)

    if settings.SEED_BUILTIN_TEMPLATES:
        db = SessionLocal()
        try:
            seeded = TemplateService(db).seed_builtin_templates()
            logger.info(f"Seeded {len(seeded)} built-in templates")
        except Exception as e:
            logger.error(f"Error seeding templates: {e}")
        finally:
            db.close()

    logger.info("Order Entry API started")


@app.on_event("shutdown")
async def shutdown_event():
    # Discard open entry sessions; pending recomputation is cancelled
    session_manager.clear()
    logger.info("Order Entry API stopped")


# Health check endpoint
@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "orderentry-api",
        "entry_sessions": len(session_manager)
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.BACKEND_HOST, port=settings.BACKEND_PORT)
