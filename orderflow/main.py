import traceback
from typing import Optional

from fastapi import FastAPI, Request, Header, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from orderflow.config import settings
from orderflow.database import Base, engine, get_db
from orderflow.errors import ApiError
from orderflow.log import get_logger
from orderflow.realtime import (
    CONNECTED_EVENT,
    ConnectionRegistry,
    authenticate_channel,
    channel_token,
    get_registry,
    timestamp,
)
from orderflow.routes import router
from orderflow import webhooks
import orderflow.models  # noqa: F401  (register tables)

logger = get_logger("server")

app = FastAPI(title="Orderflow Order & Payment Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, status=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error_messages = [
        {
            "path": ".".join(str(part) for part in error["loc"][1:]) or "unknown",
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation error", "errorMessages": error_messages},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
    content = {"success": False, "message": "Internal server error"}
    if not settings.is_production:
        content["message"] = str(exc) or content["message"]
        content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=500, content=content)


@app.get("/")
def root():
    return {"message": "Order service is running"}


@app.post("/api/payment/webhook/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    notifier: ConnectionRegistry = Depends(get_registry),
):
    # Raw bytes: any re-serialization would break the signature check
    payload = await request.body()
    return await webhooks.handle_event(db, stripe_signature, payload, notifier)


@app.websocket("/ws")
async def realtime_channel(websocket: WebSocket, registry: ConnectionRegistry = Depends(get_registry)):
    try:
        user = authenticate_channel(channel_token(websocket))
    except ApiError as e:
        logger.warning("channel_auth_failed", error=e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=e.message)
        return

    await websocket.accept()
    registry.register(user.user_id, websocket)
    logger.info("channel_connected", user_id=user.user_id, email=user.email)

    try:
        await websocket.send_json({
            "event": CONNECTED_EVENT,
            "data": {
                "message": "Connected to real-time server",
                "userId": user.user_id,
                "timestamp": timestamp(),
            },
        })
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("channel_disconnected", user_id=user.user_id)
    except Exception as e:
        logger.error("channel_error", user_id=user.user_id, error=str(e))
    finally:
        registry.unregister(user.user_id, websocket)
