"""Tournament listing and registration."""
import logging
from typing import List, Optional

from schemas import RegistrationRequest, Tournament, TournamentRegistration, TournamentStatus
from services.gateway_service import GatewayClient
from services.session_service import SessionHolder
from monitoring import tournament_registrations_counter

logger = logging.getLogger(__name__)


class TournamentService:
    """Service for tournaments."""

    def __init__(self, gateway: GatewayClient):
        self.gateway = gateway

    async def list_tournaments(self, status: Optional[TournamentStatus] = None) -> List[Tournament]:
        """
        List tournaments by date.

        Args:
            status: Only return tournaments in this status

        Returns:
            List of tournaments
        """
        filters = {"status": status.value} if status else None
        rows = await self.gateway.select("tournaments", filters, order="date")
        return [Tournament.model_validate(row) for row in rows]

    async def get_tournament(self, tournament_id: str) -> Tournament:
        row = await self.gateway.select_one("tournaments", {"id": tournament_id})
        if row is None:
            raise LookupError("Tournament not found")
        return Tournament.model_validate(row)

    async def register(
        self,
        identity: SessionHolder,
        tournament_id: str,
        request: RegistrationRequest
    ) -> TournamentRegistration:
        """
        Register the signed-in user for a tournament.

        Raises:
            PermissionError: If nobody is logged in
            LookupError: If the tournament does not exist
            ValueError: If registration is closed, fields are missing or
                the user is already registered
        """
        if not identity.is_authenticated:
            raise PermissionError("Please log in to join tournaments.")
        tournament = await self.get_tournament(tournament_id)
        if tournament.status is not TournamentStatus.UPCOMING:
            raise ValueError("Registration is closed for this tournament")

        in_game_name = request.in_game_name.strip()
        discord_username = request.discord_username.strip()
        if not in_game_name:
            raise ValueError("In-game name is required")
        if not discord_username:
            raise ValueError("Discord username is required")

        existing = await self.gateway.select_one("tournament_registrations", {
            "tournament_id": tournament.id,
            "user_id": identity.user_id
        })
        if existing is not None:
            tournament_registrations_counter.add(1, {"status": "duplicate"})
            raise ValueError("You are already registered for this tournament")

        row = await self.gateway.insert("tournament_registrations", {
            "tournament_id": tournament.id,
            "user_id": identity.user_id,
            "in_game_name": in_game_name,
            "discord_username": discord_username,
            "team_name": (request.team_name or "").strip() or None
        })
        registration = TournamentRegistration.model_validate(row)

        tournament_registrations_counter.add(1, {"status": "registered"})
        logger.info("Tournament registration created", extra={
            "user_id": identity.user_id,
            "tournament_id": tournament.id
        })
        return registration
