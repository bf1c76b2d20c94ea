import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from atelier.core.config import settings
from atelier.database.connection import close_mongo_connection, connect_to_mongo
from atelier.routers.chat import router as chat_router
from atelier.routers.conversations import router as conversations_router
from atelier.routers.devices import router as devices_router
from atelier.routers.notifications import router as notifications_router
from atelier.routers.presence import router as presence_router
from atelier.routers.uploads import router as uploads_router
from atelier.services.errors import ChatError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    try:
        yield
    finally:
        await close_mongo_connection()


app = FastAPI(title="Atelier messaging", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


app.include_router(conversations_router)
app.include_router(presence_router)
app.include_router(chat_router)
app.include_router(notifications_router)
app.include_router(devices_router)
app.include_router(uploads_router)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME}
