from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.auth.identity import AuthenticatedCaller
from backend.core import config
from backend.core.deadline import Deadline
from backend.models.user import UserRole
from backend.services.registry import Services

security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_deadline() -> Deadline:
    return Deadline.after(config.REQUEST_DEADLINE_SECONDS)


def require_roles(*roles: UserRole):
    required = frozenset(roles) or frozenset({UserRole.PATIENT, UserRole.DOCTOR})

    def get_current_caller(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
        services: Services = Depends(get_services),
        deadline: Deadline = Depends(get_deadline),
    ) -> AuthenticatedCaller:
        token = credentials.credentials if credentials else None
        return services.identity_guard.authenticate(token, required, deadline=deadline)

    return get_current_caller
