import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from daeli.config.manager import ConfigManager
from daeli.database.connection import close_store, get_store
from daeli.errors import DaeliError
from daeli.services.planner import UPCOMING_LIMIT, PlannerService
from daeli.services.resolver import suggestion_view

config_manager = ConfigManager()

# Configure logging
logging.basicConfig(level=config_manager.get('development.log_level', 'INFO'))
logger = logging.getLogger(__name__)


def get_planner() -> PlannerService:
    """FastAPI dependency that provides the planner over the shared store"""
    return PlannerService(get_store(), strict_references=config_manager.get('features.strict_references', False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Daeli API starting")
    yield
    close_store()
    logger.info("Daeli API stopped")


# Initialize FastAPI app
app = FastAPI(title="Daeli Date Planner API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config_manager.get('api.cors_origins', []),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# WebSocket connections, one per open client
active_connections = set()


async def broadcast_message(message: dict):
    """Broadcast a message to all connected clients"""
    if not active_connections:
        logger.debug("No active connections to broadcast to")
        return

    message_str = json.dumps(message)

    for connection in active_connections.copy():
        try:
            await connection.send_text(message_str)
        except Exception as e:
            logger.error(f"Error sending message to client: {e}")
            active_connections.discard(connection)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for live updates between partners"""
    await websocket.accept()
    logger.info(f"WebSocket connection accepted from {websocket.headers.get('origin')}")
    active_connections.add(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            if not data or not data.strip():
                continue

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                logger.error(f"Invalid JSON message: {data}")
                continue

            if message.get('type') == 'ping':
                await websocket.send_json({
                    'type': 'pong',
                    'timestamp': datetime.now(timezone.utc).isoformat()
                })
            else:
                logger.warning(f"Unknown message type: {message.get('type')}")

    except WebSocketDisconnect:
        logger.info("WebSocket connection closed")

    finally:
        active_connections.discard(websocket)


@app.exception_handler(DaeliError)
async def planner_exception_handler(request: Request, exc: DaeliError):
    """Map planner failures to a structured body the client can branch on"""
    logger.warning(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    error_message = str(exc)
    logger.error(f"Error processing request: {error_message}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": error_message}
    )


@app.get("/health")
def health_check():
    return {"status": "healthy"}


# Ideas

@app.get("/ideas")
def list_ideas(coupleToken: Optional[str] = None, planner: PlannerService = Depends(get_planner)):
    return [idea.to_record() for idea in planner.list_ideas(coupleToken)]


@app.post("/ideas", status_code=201)
def create_idea(body: Dict[str, Any] = Body(...), planner: PlannerService = Depends(get_planner)):
    return planner.create_idea(body).to_record()


@app.post("/ideas/ai", status_code=201)
def create_ai_ideas(body: Optional[Dict[str, Any]] = Body(None), planner: PlannerService = Depends(get_planner)):
    """Add the curated AI picks"""
    couple_token = (body or {}).get('coupleToken')
    return [idea.to_record() for idea in planner.create_ai_ideas(couple_token)]


@app.get("/ideas/{idea_id}")
def get_idea(idea_id: str, planner: PlannerService = Depends(get_planner)):
    return planner.get_idea(idea_id).to_record()


@app.put("/ideas/{idea_id}")
def update_idea(idea_id: str, body: Dict[str, Any] = Body(...), planner: PlannerService = Depends(get_planner)):
    body.pop('id', None)
    return planner.update_idea(idea_id, body).to_record()


@app.delete("/ideas/{idea_id}")
def delete_idea(idea_id: str, planner: PlannerService = Depends(get_planner)):
    planner.delete_idea(idea_id)
    return {"success": True, "message": f"Idea {idea_id} deleted"}


# Suggestions

@app.get("/suggestions")
def list_suggestions(coupleToken: Optional[str] = None, status: Optional[str] = None,
                     planner: PlannerService = Depends(get_planner)):
    return [suggestion_view(s).to_dict() for s in planner.list_suggestions(coupleToken, status)]


@app.post("/suggestions", status_code=201)
def create_suggestion(body: Dict[str, Any] = Body(...), planner: PlannerService = Depends(get_planner)):
    return suggestion_view(planner.create_suggestion(body)).to_dict()


@app.get("/suggestions/{suggestion_id}")
def get_suggestion(suggestion_id: str, planner: PlannerService = Depends(get_planner)):
    return suggestion_view(planner.get_suggestion(suggestion_id)).to_dict()


@app.put("/suggestions/{suggestion_id}")
def update_suggestion(suggestion_id: str, body: Dict[str, Any] = Body(...),
                      planner: PlannerService = Depends(get_planner)):
    body.pop('id', None)
    return suggestion_view(planner.update_suggestion(suggestion_id, body)).to_dict()


@app.delete("/suggestions/{suggestion_id}")
def delete_suggestion(suggestion_id: str, planner: PlannerService = Depends(get_planner)):
    planner.delete_suggestion(suggestion_id)
    return {"success": True, "message": f"Suggestion {suggestion_id} deleted"}


# Store calls block, so the broadcasting handlers hand them to the threadpool

@app.post("/suggestions/{suggestion_id}/votes")
async def cast_vote(suggestion_id: str, body: Dict[str, Any] = Body(...),
                    planner: PlannerService = Depends(get_planner)):
    suggestion = await run_in_threadpool(planner.cast_vote, suggestion_id, body.get('partnerId'), body.get('vote'))
    view = suggestion_view(suggestion).to_dict()
    await broadcast_message({"type": "vote_cast", "data": view})
    return view


@app.post("/suggestions/{suggestion_id}/accept")
async def accept_suggestion(suggestion_id: str, body: Optional[Dict[str, Any]] = Body(None),
                            planner: PlannerService = Depends(get_planner)):
    result = await run_in_threadpool(planner.accept, suggestion_id, accepted_by=(body or {}).get('acceptedBy'))
    payload = result.to_dict()
    if result.created:
        await broadcast_message({"type": "suggestion_accepted", "data": payload})
    return payload


@app.post("/suggestions/{suggestion_id}/cancel")
async def cancel_suggestion(suggestion_id: str, planner: PlannerService = Depends(get_planner)):
    view = suggestion_view(await run_in_threadpool(planner.cancel, suggestion_id)).to_dict()
    await broadcast_message({"type": "suggestion_cancelled", "data": view})
    return view


@app.get("/suggestions/{suggestion_id}/display")
def resolve_display(suggestion_id: str, planner: PlannerService = Depends(get_planner)):
    return planner.resolve_display(suggestion_id).to_dict()


# Events

@app.get("/events", response_model=List[Dict])
def list_events(coupleToken: Optional[str] = None, start: Optional[str] = None, end: Optional[str] = None,
                planner: PlannerService = Depends(get_planner)):
    """List events, optionally only those starting in [start, end)"""
    return [view.to_dict() for view in planner.list_event_views(coupleToken, start=start, end=end)]


@app.get("/events/upcoming", response_model=List[Dict])
def list_upcoming_events(coupleToken: Optional[str] = None, limit: int = UPCOMING_LIMIT,
                         planner: PlannerService = Depends(get_planner)):
    """Next events that have not started yet, soonest first"""
    return [view.to_dict() for view in planner.list_upcoming(coupleToken, limit=limit)]


@app.post("/events", status_code=201)
def create_event(body: Dict[str, Any] = Body(...), planner: PlannerService = Depends(get_planner)):
    """Create an event directly (administration and imports)"""
    event = planner.create_event(body)
    return planner.view_event(event).to_dict()


@app.get("/events/{event_id}")
def get_event(event_id: str, planner: PlannerService = Depends(get_planner)):
    return planner.resolve_event(event_id).to_dict()


@app.put("/events/{event_id}")
def update_event(event_id: str, body: Dict[str, Any] = Body(...), planner: PlannerService = Depends(get_planner)):
    body.pop('id', None)
    return planner.view_event(planner.update_event(event_id, body)).to_dict()


@app.delete("/events/{event_id}")
def delete_event(event_id: str, planner: PlannerService = Depends(get_planner)):
    planner.delete_event(event_id)
    return {"success": True, "message": f"Event {event_id} deleted"}


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting FastAPI application with uvicorn...")
    uvicorn.run(app, host=config_manager.get('api.host'), port=config_manager.get('api.port'), log_level="info")
