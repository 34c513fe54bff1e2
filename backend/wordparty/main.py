"""ASGI entrypoint: FastAPI app plus the Socket.IO server."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from wordparty.api import functions, games, ops, rooms, stories
from wordparty.api.errors import install_error_handlers
from wordparty.domain.games.sockets import GamesNamespace, set_namespace, start_relay
from wordparty.infra import postgres
from wordparty.infra.changefeed import change_feed
from wordparty.obs import init as obs_init
from wordparty.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	relay = start_relay(change_feed)
	try:
		yield
	finally:
		await relay.close()
		await postgres.close_pool()


app = FastAPI(title="Word Party API", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

storage_root = Path(settings.storage_root).resolve()
app.mount("/storage", StaticFiles(directory=str(storage_root), check_dir=False), name="storage")

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
games_namespace = GamesNamespace()
sio.register_namespace(games_namespace)
set_namespace(games_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

app.include_router(rooms.router)
app.include_router(games.router)
app.include_router(stories.router)
app.include_router(functions.router)
app.include_router(ops.router)


def run() -> None:
	import uvicorn

	uvicorn.run("wordparty.main:socket_app", host="0.0.0.0", port=8000, log_config=None)
