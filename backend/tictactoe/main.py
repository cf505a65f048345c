"""
Devnet API и WebSocket: лобби, игры и поток изменений аккаунтов.
"""
import logging

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from .config import get_config
from .devnet import Devnet, dashboard_state_payload, game_state_payload
from .errors import AccountNotFound, DecodeError
from .game import GameSession
from .keys import is_valid_key
from .ws_handlers import ws_loop

config = get_config()

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="TicTacToe Devnet")
devnet = Devnet(config=config)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/config.json")
async def lobby_config():
    dashboard = await devnet.dashboard()
    return {"lobby": dashboard.lobby}


@app.get("/lobby")
async def lobby():
    dashboard = await devnet.dashboard()
    state = await dashboard.refresh()
    completed = await dashboard.fetch_completed_games()
    return {
        "lobby": dashboard.lobby,
        **dashboard_state_payload(state),
        "games": [{"game": ref, **game_state_payload(g)} for ref, g in completed],
    }


@app.get("/games/{game_ref}")
async def game(game_ref: str):
    if not is_valid_key(game_ref):
        raise HTTPException(status_code=400, detail="invalid game reference")
    try:
        state = await GameSession.get_game_state(devnet.ledger, game_ref)
    except AccountNotFound:
        raise HTTPException(status_code=404, detail="game not found")
    except DecodeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"game": game_ref, **game_state_payload(state)}


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    logger.info("WS: connection attempt from %s", ws.client)
    await ws_loop(ws, devnet)
