"""Shared FastAPI dependencies."""

from fastapi import Depends, HTTPException, Request, status

from otpgate.services import Services
from otpgate.services.auth import AuthService


def get_services(request: Request) -> Services:
    """Services built for this app in the lifespan (or by tests)."""
    services: Services | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


def get_auth_service(services: Services = Depends(get_services)) -> AuthService:
    """Dependency to get auth service."""
    return services.auth


def get_bearer_token(request: Request) -> str:
    """Extract the bearer token from the Authorization header."""
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return auth_header[7:].strip()  # Remove "Bearer " prefix
