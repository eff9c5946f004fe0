"""
Activity logging middleware.
Records every mutating request to the sync, workflow and user endpoints.
"""
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from ..models.sync import ActivityLog
from ..models.base import SessionLocal, generate_uuid

logger = logging.getLogger(__name__)

TRACKED_PATH_PREFIXES = (
    "/api/v1/sync",
    "/api/v1/workflows",
    "/api/v1/users",
)

ACTION_MAP = {
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


class ActivityLogMiddleware(BaseHTTPMiddleware):
    """Writes an ActivityLog row per tracked request; a failed write never fails the request."""

    def __init__(self, app, session_factory=None):
        super().__init__(app)
        self.session_factory = session_factory

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        path = request.url.path
        if request.method not in ACTION_MAP:
            return response
        if not any(path.startswith(prefix) for prefix in TRACKED_PATH_PREFIXES):
            return response

        # /api/v1/<feature>/...
        parts = [p for p in path.split("/") if p]
        feature = parts[2] if len(parts) >= 3 else "unknown"
        user_id = request.headers.get("X-User-Id")
        device_id = request.headers.get("X-Device-Id")

        db = None
        try:
            db = (self.session_factory or SessionLocal)()
            db.add(ActivityLog(
                id=generate_uuid(),
                user_id=user_id,
                device_id=device_id,
                feature=feature,
                action=ACTION_MAP[request.method],
                request_method=request.method,
                request_path=path,
                status_code=str(response.status_code),
            ))
            db.commit()
        except Exception as exc:
            logger.warning(
                "Activity log write failed for %s %s (user=%s): %s",
                request.method, path, user_id, exc,
            )
        finally:
            if db is not None:
                db.close()

        return response
