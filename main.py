import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database
from pymongo.errors import PyMongoError

import auth
import cart
import orders
import products
import users
from database import connect, ensure_indexes
from payments import PortOneClient
from responses import register_error_handlers
from settings import Settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    payment_gateway: Optional[PortOneClient] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        if app.state.db is None:
            client = connect(settings)
            app.state.db = client[settings.database_name]
        ensure_indexes(app.state.db)
        if settings.uses_default_secret:
            logger.warning("JWT_SECRET is not set; using the default secret. Change it in production.")
        try:
            yield
        finally:
            if client is not None:
                client.close()
                logger.info("MongoDB connection closed")

    app = FastAPI(title="Board Game Shop API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = database
    app.state.payment_gateway = payment_gateway or PortOneClient.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    for module in (users, auth, products, cart, orders):
        app.include_router(module.router)

    @app.get("/")
    def root():
        return {"message": "Board Game Shop Backend Running"}

    # Simple health and db check
    @app.get("/health")
    def health(request: Request):
        db = request.app.state.db
        if db is None:
            return {"backend": "ok", "db": "not connected"}
        try:
            collections = db.list_collection_names()
            return {"backend": "ok", "db": "ok", "collections": collections}
        except PyMongoError as e:
            return {"backend": "ok", "db": f"error: {str(e)}"}

    return app


if __name__ == "__main__":
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
