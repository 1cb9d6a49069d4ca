from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_MUTATING = ("POST", "PUT", "PATCH", "DELETE")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Conservative response headers for a JSON API.

    Booking and ticket responses carry QR payloads, so nothing is cached.
    """

    async def dispatch(self, request: Request, call_next):
        resp: Response = await call_next(request)
        headers = resp.headers
        headers.setdefault("X-Content-Type-Options", "nosniff")
        headers.setdefault("X-Frame-Options", "DENY")
        headers.setdefault("Referrer-Policy", "no-referrer")
        headers.setdefault("Permissions-Policy", "camera=(), microphone=(), payment=(), usb=()")
        if request.method.upper() in _MUTATING or request.url.path.startswith("/bookings"):
            headers.setdefault("Cache-Control", "no-store")
        else:
            headers.setdefault("Cache-Control", "no-cache, max-age=0")
        return resp
