import asyncio
import time

from fastapi import Request
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def session_id_for(request: Request, ip: str, user_agent: str) -> str:
    return (
        request.headers.get("x-session-id")
        or request.cookies.get("session_id")
        or f"{ip}-{user_agent[:40]}"
    )


def user_id_for(request: Request):
    user_id = getattr(request.state, "user_id", None) or request.headers.get("x-user-id")
    return str(user_id) if user_id is not None else None


class TrafficMiddleware(BaseHTTPMiddleware):
    """Records every non-excluded request once its response has been sent."""

    def __init__(self, app, recorder):
        super().__init__(app)
        self.recorder = recorder
        self._pending = set()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not self.recorder.should_record(path):
            return await call_next(request)

        start_time = time.time()
        ip = client_ip(request)
        user_agent = request.headers.get("user-agent", "")
        capture = dict(
            method=request.method,
            path=str(request.url.path) + (f"?{request.url.query}" if request.url.query else ""),
            headers=dict(request.headers),
            ip=ip,
            user_agent=user_agent,
            session_id=session_id_for(request, ip, user_agent),
            started_at=start_time,
        )

        try:
            response = await call_next(request)
        except Exception:
            # The response never made it out; record the failure without waiting on it
            capture.update(status=500, user_id=user_id_for(request))
            task = asyncio.create_task(asyncio.to_thread(self.recorder.record, **capture))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            raise

        capture.update(status=response.status_code, user_id=user_id_for(request))
        previous = response.background

        async def after_response():
            try:
                if previous is not None:
                    await previous()
            finally:
                await asyncio.to_thread(self.recorder.record, **capture)

        response.background = BackgroundTask(after_response)
        return response
