"""Authentication routes guarded by the lockout gate."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from ...auth.credentials import CredentialVerifier
from ...config import LoginWatchConfig
from ...dependencies import get_app_config, get_auth_gate, get_client_ip, get_credential_verifier
from ...engine.audit_sink import Outcome
from ...engine.auth_gate import AuthGate
from ...engine.errors import InvalidIdentityError
from ...engine.identity import normalize_username
from ...utils.security import create_access_token

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    client_ip: str = Depends(get_client_ip),
    gate: AuthGate = Depends(get_auth_gate),
    verify: CredentialVerifier = Depends(get_credential_verifier),
    config: LoginWatchConfig = Depends(get_app_config),
):
    """Authenticate a user and return a JWT access token."""
    decision = await gate.on_attempt_start(body.username, client_ip)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=decision.message,
            headers={"Retry-After": str(decision.retry_after)},
        )

    ok = bool(body.username.strip()) and await verify(body.username, body.password)
    await gate.on_outcome(
        body.username,
        client_ip,
        Outcome.SUCCESS if ok else Outcome.FAILURE,
        login_url=str(request.url),
    )

    if not ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    try:
        subject = normalize_username(body.username)
    except InvalidIdentityError:
        subject = body.username.strip()

    token = create_access_token(
        data={"sub": subject},
        secret_key=config.secret_key,
        algorithm=config.jwt_algorithm,
        expires_minutes=config.jwt_expiry_minutes,
    )
    return {"access_token": token, "token_type": "bearer"}
