from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from latidos.core.auth.service import AuthService
from latidos.core.auth.schemas import Participant

# auto_error=False: sin cabecera respondemos 401 (no el 403 por defecto)
security = HTTPBearer(auto_error=False)

class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "No autorizado"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

async def get_current_participant(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Participant:
    """Obtener participante actual (organización + usuario) desde el token"""

    if credentials is None:
        raise AuthenticationError()

    payload = AuthService.verify_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Token inválido o expirado")

    organization_id = payload.get("organization_id")
    user_id = payload.get("user_id")
    if not organization_id or not user_id:
        raise AuthenticationError()

    return Participant(
        organization_id=str(organization_id),
        participant_id=str(user_id),
        participant_name=payload.get("name") or "Usuario"
    )
