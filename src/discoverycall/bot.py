import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from discoverycall.config import Settings, load_settings, validate_config
from discoverycall.discovery import DiscoveryTracker
from discoverycall.handler import CallHandler
from discoverycall.post_call import handle_call_ended
from discoverycall.tools import CalendarClient, MemoryClient
from discoverycall.webhooks import WebhookClient

load_dotenv()
validate_config()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_collaborators(settings: Settings):
    """Calendar, memory and webhook clients; None for any without a URL."""
    calendar = memory = webhooks = None
    if settings.calendar_api_url:
        calendar = CalendarClient(settings.calendar_api_url, api_key=settings.calendar_api_key)
    if settings.memory_api_url:
        memory = MemoryClient(settings.memory_api_url, api_key=settings.memory_api_key)
    if settings.webhook_url:
        webhooks = WebhookClient(url=settings.webhook_url, secret=settings.webhook_secret)
    return calendar, memory, webhooks


settings = load_settings()
tracker = DiscoveryTracker()
calendar, memory, webhooks = build_collaborators(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Collaborators: calendar=%s memory=%s webhook=%s",
        calendar is not None, memory is not None, webhooks is not None,
    )
    yield
    for client in (calendar, memory):
        if client is not None:
            await client.close()


app = FastAPI(title="Discovery Call Agent", lifespan=lifespan)


@app.get("/health")
async def health():
    return PlainTextResponse("ok")


@app.websocket("/llm-websocket/{call_path}")
async def llm_websocket(websocket: WebSocket, call_path: str):
    await websocket.accept()
    handler = CallHandler(
        call_path,
        websocket.query_params,
        websocket.send_text,
        tracker,
        settings,
        calendar=calendar,
        memory=memory,
        webhooks=webhooks,
    )
    await handler.start()
    try:
        while True:
            raw = await websocket.receive_text()
            await handler.handle_message(raw)
    except WebSocketDisconnect:
        logger.info("Websocket closed for %s", handler.session.call_id)
    finally:
        await handle_call_ended(handler.session, tracker, memory=memory, webhooks=webhooks)


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("discoverycall.bot:app", host="0.0.0.0", port=port)
