import inspect
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from routes.chat_route import router as chat_router
from utils.settings import RelaySettings

from dotenv import load_dotenv

load_dotenv()  # Load environment variables from .env file if present

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the relay settings (read once from the environment)
      - the upstream async client (OpenAI SDK pointed at the upstream base URL)
    and attach them to `app.state`.
    """
    settings = RelaySettings.from_env()
    app.state.settings = settings
    app.state.openai_client = None

    if not settings.api_key:
        # Requests are answered with a 500 until a key is configured.
        logging.error("TOGETHER_API_KEY not configured.")
    else:
        try:
            app.state.openai_client = AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url)
        except Exception as exc:
            raise RuntimeError("Failed to initialize upstream async client") from exc

    try:
        yield
    finally:
        client = getattr(app.state, "openai_client", None)
        if client is not None:
            aclose = getattr(client, "close", None) or getattr(client, "aclose", None)
            if aclose is not None:
                try:
                    if inspect.iscoroutinefunction(aclose):
                        await aclose()
                    else:
                        result = aclose()
                        if inspect.isawaitable(result):
                            await result
                except Exception:
                    logging.warning("Error while closing the upstream client", exc_info=True)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that reports whether the upstream client is configured.
        """
        settings = getattr(request.app.state, "settings", None)
        has_upstream = getattr(request.app.state, "openai_client", None) is not None
        return {
            "ok": True,
            "upstream_available": has_upstream,
            "model": settings.model if settings is not None else None,
        }

    app.include_router(chat_router)

    return app


app = create_app()
