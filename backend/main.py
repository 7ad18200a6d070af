from fastapi import FastAPI, WebSocket, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging

import config
config.setup_logging()

from gateway import gateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting trivia room server")
    gateway.start_cleanup_loop()
    yield
    gateway.stop_cleanup_loop()
    logger.info("Shutting down trivia room server")


app = FastAPI(title="Trivia Room Server", lifespan=lifespan)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await gateway.connect(websocket)


@app.get("/room/{room_code}")
async def get_room(room_code: str):
    room = gateway.registry.get_room(room_code)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.snapshot()


# Configure CORS
origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",") if o.strip()]
gateway.allowed_origins = origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Trivia room server is running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "rooms": len(gateway.registry.rooms)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
