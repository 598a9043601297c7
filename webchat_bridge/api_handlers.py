"""
HTTP API handlers for the web chat client.

The web client polls /api/messages and posts to the other endpoints; every
body is JSON. All state lives in the MessageBridge, these handlers only parse
requests, call the bridge and map bridge exceptions to HTTP statuses.
"""

import logging
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

import pydantic
from aiohttp import web

from .api_models import PasswordPayload, SendPayload, TypingPayload
from .bot_exceptions import BridgeError, ValidationError

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=pydantic.BaseModel)


class APIResponse:
    """Helper class for creating standardized API responses."""

    @staticmethod
    def success(data: Any = None, message: str = "Success") -> Dict[str, Any]:
        """Create a success response."""
        response = {
            "success": True,
            "message": message
        }
        if data is not None:
            response["data"] = data
        return response

    @staticmethod
    def error(
        error_code: str,
        message: str,
        details: str = None,
        status_code: int = 400
    ) -> Dict[str, Any]:
        """Create an error response."""
        response = {
            "success": False,
            "error": message,
            "error_code": error_code,
            "status_code": status_code,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
        if details:
            response["details"] = details
        return response


class BridgeAPIHandlers:
    """
    HTTP API handlers backed by a MessageBridge.
    """

    def __init__(self, bridge):
        self.bridge = bridge

        # Request tracking for debugging
        self.request_count = 0

    def _next_request_id(self) -> str:
        self.request_count += 1
        return f"req_{self.request_count}"

    async def _parse(self, request: web.Request, model: Type[PayloadT]) -> PayloadT:
        try:
            data = await request.json()
        except Exception as e:
            raise ValidationError("Invalid JSON in request body") from e

        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError("Invalid request body") from e

    def _error_response(self, request_id: str, error: BridgeError) -> web.Response:
        logger.warning(f"[{request_id}] {error.error_code}: {error.message}")
        return web.json_response(
            APIResponse.error(error.error_code, error.message, status_code=error.status_code),
            status=error.status_code
        )

    def _internal_error(self, request_id: str, error: Exception, message: str) -> web.Response:
        logger.error(f"[{request_id}] {message}: {error}")
        logger.error(traceback.format_exc())
        return web.json_response(
            APIResponse.error("INTERNAL_ERROR", message, details=str(error), status_code=500),
            status=500
        )

    async def handle_validate_password(self, request: web.Request) -> web.Response:
        """
        POST /api/validate-password

        Returns {valid} without touching any other state.
        """
        request_id = self._next_request_id()

        try:
            payload = await self._parse(request, PasswordPayload)
            valid = self.bridge.validate_password(payload.password)
            logger.debug(f"[{request_id}] Password validation: {valid}")
            return web.json_response({"valid": valid})

        except BridgeError as e:
            return self._error_response(request_id, e)
        except Exception as e:
            return self._internal_error(request_id, e, "Failed to validate password")

    async def handle_get_messages(self, request: web.Request) -> web.Response:
        """
        POST /api/messages

        Returns the full history and the users currently typing. Counts as
        web-client activity for presence.
        """
        request_id = self._next_request_id()

        try:
            payload = await self._parse(request, PasswordPayload)
            snapshot = await self.bridge.get_snapshot(payload.password)
            return web.json_response(snapshot)

        except BridgeError as e:
            return self._error_response(request_id, e)
        except Exception as e:
            return self._internal_error(request_id, e, "Failed to fetch messages")

    async def handle_typing(self, request: web.Request) -> web.Response:
        """POST /api/typing"""
        request_id = self._next_request_id()

        try:
            payload = await self._parse(request, TypingPayload)
            await self.bridge.set_typing(payload.username, payload.is_typing, payload.password)
            return web.json_response({"success": True})

        except BridgeError as e:
            return self._error_response(request_id, e)
        except Exception as e:
            return self._internal_error(request_id, e, "Failed to handle typing indicator")

    async def handle_send(self, request: web.Request) -> web.Response:
        """
        POST /api/send

        Relays a web message to Discord. Replies fall back to an inline quote
        when the target can't be fetched.
        """
        request_id = self._next_request_id()
        logger.info(f"[{request_id}] Processing send request")

        try:
            payload = await self._parse(request, SendPayload)
            record = await self.bridge.submit_web_message(
                payload.message, payload.username, payload.password, payload.reply_to
            )
            logger.info(f"[{request_id}] Sent web message {record.id}")
            return web.json_response(
                APIResponse.success(data=record.to_dict(), message="Message sent")
            )

        except BridgeError as e:
            return self._error_response(request_id, e)
        except Exception as e:
            return self._internal_error(request_id, e, "Failed to send message")

    async def handle_purge_bot_messages(self, request: web.Request) -> web.Response:
        """POST /api/purge-bot-messages"""
        request_id = self._next_request_id()

        try:
            payload = await self._parse(request, PasswordPayload)
            removed = self.bridge.purge_bot_messages(payload.password)
            return web.json_response({
                "success": True,
                "removedCount": removed,
                "message": f"Removed {removed} bot messages"
            })

        except BridgeError as e:
            return self._error_response(request_id, e)
        except Exception as e:
            return self._internal_error(request_id, e, "Failed to purge bot messages")

    async def handle_health_check(self, request: web.Request) -> web.Response:
        """GET /health"""
        try:
            stats = {
                **self.bridge.get_stats(),
                "request_count": self.request_count,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
            return web.json_response(
                APIResponse.success(data=stats, message="Bridge is healthy")
            )

        except Exception as e:
            logger.error(f"Health check error: {e}")
            return web.json_response(
                APIResponse.error("HEALTH_CHECK_ERROR", "Health check failed", details=str(e), status_code=500),
                status=500
            )


def create_routes(handlers: BridgeAPIHandlers) -> List[web.RouteDef]:
    """Create all the HTTP routes for the bridge API."""
    return [
        web.post("/api/validate-password", handlers.handle_validate_password),
        web.post("/api/messages", handlers.handle_get_messages),
        web.post("/api/typing", handlers.handle_typing),
        web.post("/api/send", handlers.handle_send),
        web.post("/api/purge-bot-messages", handlers.handle_purge_bot_messages),
        web.get("/health", handlers.handle_health_check),
    ]


def create_static_routes(static_dir: Optional[str]) -> List[web.AbstractRouteDef]:
    """Serve the web client from `static_dir` when it exists."""
    if not static_dir:
        return []

    root = Path(static_dir)
    if not root.is_dir():
        logger.info(f"Static directory {root} not found, web client not served")
        return []

    index = root / "index.html"

    async def handle_index(request: web.Request) -> web.StreamResponse:
        if not index.is_file():
            raise web.HTTPNotFound()
        return web.FileResponse(index)

    return [
        web.get("/", handle_index),
        web.static("/", root),
    ]
