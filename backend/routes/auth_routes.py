from fastapi import APIRouter, Depends
from pydantic import BaseModel

from backend.auth.dependencies import require_roles
from backend.auth.identity import AuthenticatedCaller
from backend.models.participant import ParticipantKind
from backend.models.user import UserRole

router = APIRouter(tags=['auth'])


class CallerResponse(BaseModel):
    user_id: str
    email: str
    full_name: str
    role: UserRole
    participant_kind: ParticipantKind
    participant_id: str

    class Config:
        from_attributes = True


@router.get("/me", response_model=CallerResponse)
def me(current_caller: AuthenticatedCaller = Depends(require_roles(UserRole.PATIENT, UserRole.DOCTOR))):
    return current_caller
