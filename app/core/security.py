from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from app.core.firebase import verify_id_token

security_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
  return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def get_current_user_id(token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)]) -> str:
  """Verify the Firebase ID token and return the caller's uid."""
  if token is None or not token.credentials:
    raise _unauthorized("Not authenticated")

  # firebase-admin verification is blocking (certificate fetch); keep it off the event loop.
  decoded_claims = await run_in_threadpool(verify_id_token, token.credentials)
  if not decoded_claims:
    raise _unauthorized("Invalid authentication credentials")

  uid = decoded_claims.get("uid") or decoded_claims.get("user_id") or decoded_claims.get("sub")
  if not uid:
    raise _unauthorized("Token missing uid")
  return str(uid)
