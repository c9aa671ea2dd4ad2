import time
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.cors import CORSMiddleware
from streamchat.db import init_db
from streamchat.routes.chat.route import router as chat_router

STREAM_PATH = "/chat/stream"

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("Database tables are ready")
    yield


def initialize_app() -> FastAPI:
    app = FastAPI(
        title="StreamChat API",
        description="Conversation storage and streamed Gemini replies for the chat client",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.include_router(chat_router, prefix="/api/v1", tags=["chat"])
    return app


class StreamAwareGZipMiddleware(GZipMiddleware):
    """GZip that leaves event streams alone so frames reach the client as sent."""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"].endswith(STREAM_PATH):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


def add_middlewares(app: FastAPI):
    app.add_middleware(StreamAwareGZipMiddleware, minimum_size=1000)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response


app = initialize_app()
add_middlewares(app)


@app.get("/")
async def root():
    return {"message": "StreamChat API is running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    logger.info("Starting StreamChat API server...")
    import uvicorn

    uvicorn.run(
        "streamchat.__main__:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
