from fastapi import FastAPI

from relay.config import settings
from relay.logging_config import setup_logging
from relay.routers import conversations

setup_logging(settings.log_level)

app = FastAPI(
    title="Conversations Bot Relay",
    description="Relays conversation messages to an assistant and posts its replies back",
    version="0.1.0",
)

app.include_router(conversations.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
