# besty/api/endpoints/health.py
from fastapi import APIRouter, Depends

from besty.api.deps import get_services
from besty.services.container import Services

router = APIRouter()


@router.get("")
async def health(services: Services = Depends(get_services)):
    orchestrator = services.orchestrator
    return {
        "status": "ok",
        "storage": type(services.storage).__name__,
        "gateways": {
            "transcription": orchestrator.transcription.name,
            "chat": orchestrator.chat.name,
            "speech": orchestrator.speech.name,
        },
    }
