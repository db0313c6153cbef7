"""Shop assistant API router."""
from fastapi import APIRouter, Depends, HTTPException
from typing import List

from client_state import ClientContext
from schemas import AssistantHistoryEntry, AssistantRequest, AssistantResponse
from dependencies import get_assistant_service, get_client
from services.assistant_service import AssistantError, AssistantService, AssistantUnavailable

router = APIRouter(prefix="/assistant", tags=["assistant"])


@router.post("", response_model=AssistantResponse)
async def ask(
    request: AssistantRequest,
    client: ClientContext = Depends(get_client),
    assistant: AssistantService = Depends(get_assistant_service)
):
    """Ask the shop assistant a question."""
    try:
        text = await assistant.ask(client.identity, request.message)
    except AssistantUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except AssistantError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return AssistantResponse(text=text)


@router.get("/history", response_model=List[AssistantHistoryEntry])
async def get_history(
    client: ClientContext = Depends(get_client),
    assistant: AssistantService = Depends(get_assistant_service)
):
    """Last assistant exchanges of the signed-in user, oldest first."""
    return await assistant.history(client.identity.user_id)
