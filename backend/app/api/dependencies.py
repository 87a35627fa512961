"""
API Dependencies

FastAPI dependency injection for authentication and the storage components.

Security: JWT tokens are verified cryptographically using Supabase JWKS (ES256)
with HS256 fallback via the JWT secret. Never decode without verification.
"""

import logging
from typing import Annotated, Optional

import jwt
from jwt import PyJWKClient
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config.settings import get_settings
from app.domain.subscription import UserIdentity
from app.infrastructure.db.repositories import SubscriptionRepository, WebhookEventRepository
from app.infrastructure.payments.stripe_service import StripeService
from app.infrastructure.services.components import StorageComponents
from app.infrastructure.services.migration_orchestrator import MigrationOrchestrator
from app.infrastructure.services.storage_router import StorageRouter
from app.infrastructure.services.subscription_tracker import SubscriptionTracker


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Cached JWKS client, shared across requests.
# PyJWKClient caches keys internally and refreshes ~every 10 min.
_jwks_client: Optional[PyJWKClient] = None


def _get_jwks_client() -> PyJWKClient:
    """Return a singleton PyJWKClient for the Supabase JWKS endpoint."""
    global _jwks_client
    if _jwks_client is None:
        settings = get_settings()
        jwks_url = f"{settings.supabase_url}/auth/v1/.well-known/jwks.json"
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True)
    return _jwks_client


def _decode_with_jwks(token: str, issuer: str) -> dict:
    """Verify JWT using Supabase JWKS endpoint (ES256 asymmetric keys)."""
    client = _get_jwks_client()
    signing_key = client.get_signing_key_from_jwt(token)
    return jwt.decode(
        token,
        signing_key.key,
        algorithms=["ES256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


def _decode_with_secret(token: str, secret: str, issuer: str) -> dict:
    """Verify JWT using HS256 symmetric secret (legacy Supabase signing)."""
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        issuer=issuer,
        audience="authenticated",
        options={"require": ["exp", "sub", "iss"]},
    )


async def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Verify a Supabase JWT and return its claims.

    Verification strategy (in order):
      1. JWKS (ES256), preferred; supports key rotation automatically.
      2. HS256 with ``SUPABASE_JWT_SECRET``, fallback for legacy signing.

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    settings = get_settings()
    issuer = f"{settings.supabase_url}/auth/v1"

    payload: Optional[dict] = None

    # --- Strategy 1: JWKS (ES256) ---
    try:
        payload = _decode_with_jwks(token, issuer)
    except (jwt.exceptions.PyJWKClientError, jwt.InvalidTokenError) as jwks_err:
        logger.debug("JWKS verification failed, trying HS256 fallback: %s", jwks_err)

    # --- Strategy 2: HS256 fallback ---
    if payload is None and settings.supabase_jwt_secret:
        try:
            payload = _decode_with_secret(
                token, settings.supabase_jwt_secret, issuer
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
            )
        except jwt.InvalidTokenError as e:
            logger.warning("HS256 JWT verification also failed: %s", e)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID",
        )

    return payload


async def get_current_user_id(claims: dict = Depends(get_token_claims)) -> str:
    """Authenticated user ID (``sub`` claim)."""
    return claims["sub"]


async def get_current_identity(claims: dict = Depends(get_token_claims)) -> UserIdentity:
    """Authenticated identity as captured at sign-in."""
    return UserIdentity(user_id=claims["sub"], email=claims.get("email"))


# =============================================================================
# Storage Components
# Built once in the application lifespan and stored on app.state.
# =============================================================================

def get_components(request: Request) -> StorageComponents:
    components: Optional[StorageComponents] = getattr(request.app.state, "components", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage layer is not initialized",
        )
    return components


def get_storage_router(
    components: StorageComponents = Depends(get_components),
) -> StorageRouter:
    return components.router


def get_subscription_tracker(
    components: StorageComponents = Depends(get_components),
) -> SubscriptionTracker:
    return components.tracker


def get_migration_orchestrator(
    components: StorageComponents = Depends(get_components),
) -> MigrationOrchestrator:
    return components.orchestrator


def get_webhook_event_repository(
    components: StorageComponents = Depends(get_components),
) -> WebhookEventRepository:
    return components.webhook_events


def get_subscription_repository(
    components: StorageComponents = Depends(get_components),
) -> SubscriptionRepository:
    return components.subscriptions


def get_stripe_service(
    components: StorageComponents = Depends(get_components),
) -> StripeService:
    return components.stripe


# Type aliases for route signatures
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
StorageRouterDep = Annotated[StorageRouter, Depends(get_storage_router)]
TrackerDep = Annotated[SubscriptionTracker, Depends(get_subscription_tracker)]
OrchestratorDep = Annotated[MigrationOrchestrator, Depends(get_migration_orchestrator)]
WebhookEventRepoDep = Annotated[WebhookEventRepository, Depends(get_webhook_event_repository)]
SubscriptionRepoDep = Annotated[SubscriptionRepository, Depends(get_subscription_repository)]
StripeServiceDep = Annotated[StripeService, Depends(get_stripe_service)]
