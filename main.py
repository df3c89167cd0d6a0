import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import accounts
import auth
import cart
import items
from config import Settings
from database import Database
from deps import get_db
from errors import register_error_handlers
from images import CloudinaryImageHost
from logging_setup import setup_logging
from security import TokenSigner
from sms import PhilSmsGateway

log = logging.getLogger("coast2cart.main")


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    sms=None,
    images=None,
) -> FastAPI:
    """Build the API. Collaborators not passed in are constructed from settings."""
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    db = db or Database(settings.database_url, settings.database_name)
    sms = sms or PhilSmsGateway(settings.philsms_api_url, settings.philsms_api_key, settings.philsms_sender_id)
    images = images or CloudinaryImageHost(
        settings.cloudinary_cloud_name,
        settings.cloudinary_api_key,
        settings.cloudinary_api_secret,
        settings.cloudinary_folder,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.connect()
        if db.db is not None:
            db.ensure_indexes()
        log.info("Coast2Cart API started")
        yield
        db.close()
        log.info("Coast2Cart API stopped")

    app = FastAPI(title="Coast2Cart Marketplace API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.db = db
    app.state.sms = sms
    app.state.images = images
    app.state.signer = TokenSigner(settings.jwt_secret, settings.jwt_algorithm, settings.jwt_expires_days)

    register_error_handlers(app)

    # ===================== Public Endpoints =====================
    @app.get("/")
    def root():
        return {"message": "Coast2Cart Backend Server", "status": "running"}

    @app.get("/health")
    def health(database: Database = Depends(get_db)):
        status = {
            "configured": database.configured,
            "connected": False,
            "collections": [],
        }
        try:
            if database.ping():
                status["connected"] = True
                status["collections"] = sorted(database.db.list_collection_names())[:10]
        except Exception as e:
            log.warning("Health check database ping failed: %s", e)
            status["error"] = str(e)[:80]
        healthy = status["connected"]
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={"status": "ok" if healthy else "degraded", "database": status},
        )

    app.include_router(auth.router)
    app.include_router(accounts.router)
    app.include_router(items.router)
    app.include_router(cart.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
