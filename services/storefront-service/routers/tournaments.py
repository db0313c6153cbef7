"""Tournaments API router."""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional

from client_state import ClientContext
from schemas import RegistrationRequest, Tournament, TournamentRegistration, TournamentStatus
from dependencies import get_client, get_tournament_service
from services.tournament_service import TournamentService

router = APIRouter(prefix="/tournaments", tags=["tournaments"])


@router.get("", response_model=List[Tournament])
async def get_tournaments(
    status: Optional[TournamentStatus] = Query(None),
    tournament_service: TournamentService = Depends(get_tournament_service)
):
    """Tournaments ordered by date."""
    return await tournament_service.list_tournaments(status)


@router.get("/{tournament_id}", response_model=Tournament)
async def get_tournament(
    tournament_id: str,
    tournament_service: TournamentService = Depends(get_tournament_service)
):
    try:
        return await tournament_service.get_tournament(tournament_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{tournament_id}/register", response_model=TournamentRegistration, status_code=201)
async def register(
    tournament_id: str,
    request: RegistrationRequest,
    client: ClientContext = Depends(get_client),
    tournament_service: TournamentService = Depends(get_tournament_service)
):
    """Join an upcoming tournament."""
    try:
        return await tournament_service.register(client.identity, tournament_id, request)
    except PermissionError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
