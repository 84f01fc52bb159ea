from pydantic import BaseModel, Field

class Participant(BaseModel):
    """Identidad del participante resuelta desde el token"""
    organization_id: str = Field(..., description="Organización (tenant) del usuario")
    participant_id: str = Field(..., description="ID del usuario")
    participant_name: str = Field("Usuario", description="Nombre visible")

    class Config:
        json_schema_extra = {
            "example": {
                "organization_id": "org-1",
                "participant_id": "u1",
                "participant_name": "Ana"
            }
        }
