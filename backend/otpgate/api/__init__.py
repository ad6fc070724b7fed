# otpgate API routers
from otpgate.api.auth import register_exception_handlers
from otpgate.api.auth import router as auth_router
from otpgate.api.health import router as health_router

__all__ = ["auth_router", "health_router", "register_exception_handlers"]
