"""Dependency injection for FastAPI endpoints"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dues_gateway.config import settings
from dues_gateway.domain.exceptions import AuthorizationError
from dues_gateway.domain.models import Requester, Role
from dues_gateway.infrastructure.auth import AuthGuard
from dues_gateway.infrastructure.clients.processor import PaymentProcessorClient
from dues_gateway.infrastructure.rate_limit import SlidingWindowRateLimiter

bearer_scheme = HTTPBearer(auto_error=False)

payment_rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.payment_rate_limit_requests,
    window_seconds=settings.payment_rate_limit_window_seconds,
)


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_processor_client() -> PaymentProcessorClient:
    """Provide payment processor client instance"""
    return PaymentProcessorClient()


def get_auth_guard() -> AuthGuard:
    return AuthGuard()


def get_payment_rate_limiter() -> SlidingWindowRateLimiter:
    return payment_rate_limiter


def get_current_requester(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    guard: AuthGuard = Depends(get_auth_guard),
) -> Requester:
    """Resolve the bearer token to the calling identity"""
    return guard.authenticate(credentials.credentials if credentials else None)


def enforce_payment_rate_limit(
    requester: Requester = Depends(get_current_requester),
    limiter: SlidingWindowRateLimiter = Depends(get_payment_rate_limiter),
) -> Requester:
    """Authenticated requester, rate limited like other payment-mutating endpoints"""
    limiter.check(f"user:{requester.user_id}")
    return requester


def require_operator(requester: Requester = Depends(get_current_requester)) -> Requester:
    if not requester.is_operator:
        raise AuthorizationError("Operator role required")
    return requester


def require_admin(requester: Requester = Depends(get_current_requester)) -> Requester:
    if requester.role != Role.ADMIN:
        raise AuthorizationError("Admin role required")
    return requester
