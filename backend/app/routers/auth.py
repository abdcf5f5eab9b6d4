import os
import secrets

from fastapi import Header, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from ..exceptions import http_problem


WEAK_TOKENS = {"secret", "changeme", "default", "admin"}


def get_admin_token() -> str:
  token = os.getenv("ADMIN_TOKEN")
  if not token:
    raise RuntimeError("ADMIN_TOKEN environment variable is required")
  if len(token) < 32 or token.lower() in WEAK_TOKENS:
    raise RuntimeError(
        "ADMIN_TOKEN must be at least 32 characters and not a common default"
    )
  return token


def _rate_limits_disabled() -> bool:
  return (os.getenv("DISABLE_RATE_LIMITS") or "").lower() == "true"


def _get_client_ip(request: Request) -> str:
  forwarded = request.headers.get("X-Forwarded-For")
  if forwarded:
    parts = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
    if parts:
      return parts[-1]
  real_ip = request.headers.get("X-Real-IP")
  if real_ip:
    return real_ip
  return request.client.host if request.client else ""


limiter = Limiter(key_func=_get_client_ip, enabled=not _rate_limits_disabled())


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
  detail = exc.detail if isinstance(exc.detail, str) else ""
  if detail:
    message = f"rate limit exceeded: {detail}"
  else:
    message = "rate limit exceeded: please wait before submitting another request."
  return JSONResponse(
      status_code=429,
      content={
          "title": "Too Many Requests",
          "detail": message,
          "status": 429,
          "code": "rate_limit_exceeded",
          "kind": "exhaustion",
      },
      media_type="application/problem+json",
  )


def _bearer_token(authorization: str | None) -> str | None:
  if not authorization:
    return None
  scheme, _, value = authorization.partition(" ")
  if scheme.lower() != "bearer" or not value.strip():
    return None
  return value.strip()


async def get_admin_principal(authorization: str | None = Header(None)) -> str:
  """Accept requests presenting the shared admin bearer token."""

  expected = get_admin_token()
  presented = _bearer_token(authorization)
  if presented is None:
    raise http_problem(
        status_code=401,
        detail="missing token",
        code="auth_missing_token",
        headers={"WWW-Authenticate": "Bearer"},
    )
  if not secrets.compare_digest(presented.encode(), expected.encode()):
    raise http_problem(
        status_code=401,
        detail="invalid token",
        code="auth_invalid_token",
        headers={"WWW-Authenticate": "Bearer"},
    )
  return "admin"
