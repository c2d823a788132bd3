"""FastAPI dependency injection providers.

Service instances are built once by ``create_app`` and kept on ``app.state``;
these providers hand them to route handlers.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth.credentials import CredentialVerifier
from .config import LoginWatchConfig
from .engine.auth_gate import AuthGate
from .utils.security import decode_access_token

security_scheme = HTTPBearer(auto_error=False)


def get_app_config(request: Request) -> LoginWatchConfig:
    return request.app.state.config


async def get_db(request: Request):
    """Get an async database session."""
    async with request.app.state.session_factory() as session:
        yield session


def get_auth_gate(request: Request) -> AuthGate:
    return request.app.state.auth_gate


def get_credential_verifier(request: Request) -> CredentialVerifier:
    return request.app.state.credential_verifier


def get_client_ip(request: Request, config: LoginWatchConfig = Depends(get_app_config)) -> str:
    """Source address of the request; X-Forwarded-For only when trusted.

    Clients control the left end of the header, so the address is read
    ``trusted_proxy_count`` hops from the right, where the last trusted
    proxy wrote it. A chain shorter than that falls back to the peer.
    """
    if config.trust_forwarded_for:
        hops = [h.strip() for h in request.headers.get("x-forwarded-for", "").split(",") if h.strip()]
        if len(hops) >= config.trusted_proxy_count:
            return hops[-config.trusted_proxy_count]
    return request.client.host if request.client else ""


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    config: LoginWatchConfig = Depends(get_app_config),
) -> dict:
    """Validate the bearer JWT and return its payload."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials, config.secret_key, config.jwt_algorithm)
    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload
