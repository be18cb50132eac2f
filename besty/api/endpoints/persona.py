# besty/api/endpoints/persona.py
from fastapi import APIRouter, Depends, Response, status

from besty.api.deps import get_current_user, get_services
from besty.core.errors import NotFound
from besty.schemas.persona import Persona, PersonaUpsert
from besty.schemas.user import User
from besty.services.container import Services

router = APIRouter()


@router.post(
    "",
    response_model=Persona,
    status_code=status.HTTP_201_CREATED,
    summary="Create or update the user's persona",
)
async def upsert_persona(
    persona_data: PersonaUpsert,
    response: Response,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """
    Each user has one persona. Posting again updates it in place (200);
    the first post creates it (201).
    """
    existing = await services.personas.get(current_user.id)
    persona = await services.personas.upsert(
        current_user.id,
        voice=persona_data.voice,
        mood=persona_data.mood,
        custom_voice_id=persona_data.custom_voice_id,
        custom_mood_settings=persona_data.custom_mood_settings,
    )
    if existing is not None:
        response.status_code = status.HTTP_200_OK
    return persona


@router.get("/current", response_model=Persona, summary="The user's persona")
async def get_current_persona(
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    persona = await services.personas.get(current_user.id)
    if persona is None:
        raise NotFound("No persona found")
    return persona
