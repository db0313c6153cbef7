"""Orders API router."""
import asyncio
import logging
from typing import List, Set

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from auth import validate_client_id
from client_state import ClientContext, ClientRegistry
from config import CHAT_PAGE_SIZE
from logging_config import bind_client_id
from schemas import (
    ChatAction,
    ChatCommand,
    ChatPageResponse,
    CheckoutResponse,
    Message,
    Order,
    SendMessageRequest
)
from dependencies import (
    get_client,
    get_gateway,
    get_order_service,
    get_realtime,
    get_registry,
    require_user
)
from services.chat_service import ChatEvent, OrderChat, fetch_page, post_message
from services.gateway_service import GatewayClient
from services.order_service import OrderService
from services.realtime_service import RealtimeChannel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

# WebSocket close code for policy violations (bad client id, no access)
POLICY_VIOLATION = 1008


@router.post("/checkout", response_model=CheckoutResponse)
async def checkout(client: ClientContext = Depends(get_client)):
    """
    Buy everything in the cart with the wallet balance.

    Every outcome (including login required, insufficient funds and a
    checkout already in flight) is reported in the body with its status.
    """
    outcome = await client.checkout.checkout()
    return CheckoutResponse(
        status=outcome.status.value,
        message=outcome.message,
        new_balance=outcome.new_balance,
        points_earned=outcome.points_earned,
        redirect=outcome.redirect
    )


@router.get("", response_model=List[Order])
async def get_orders(
    client: ClientContext = Depends(require_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Get the signed-in user's orders, newest first."""
    return await order_service.get_user_orders(client.identity.user_id)


@router.get("/{order_id}", response_model=Order)
async def get_order(
    order_id: str,
    client: ClientContext = Depends(require_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Get one order (owner or admin)."""
    try:
        return await order_service.get_order_for_viewer(order_id, client.identity)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.get("/{order_id}/messages", response_model=ChatPageResponse)
async def get_messages(
    order_id: str,
    offset: int = Query(0, ge=0, description="Number of newest messages already held"),
    client: ClientContext = Depends(require_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Page of an order's support chat, returned oldest first."""
    try:
        await order_service.get_order_for_viewer(order_id, client.identity)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    rows = await fetch_page(order_service.gateway, order_id, offset, CHAT_PAGE_SIZE)
    return ChatPageResponse(messages=list(reversed(rows)), has_more=len(rows) == CHAT_PAGE_SIZE)


@router.post("/{order_id}/messages", response_model=Message)
async def send_message(
    order_id: str,
    request: SendMessageRequest,
    client: ClientContext = Depends(require_user),
    order_service: OrderService = Depends(get_order_service),
    realtime: RealtimeChannel = Depends(get_realtime)
):
    """Post a support message on an order."""
    try:
        await order_service.get_order_for_viewer(order_id, client.identity)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    content = request.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Message content is required")
    return await post_message(order_service.gateway, realtime, order_id, client.identity.user_id, content)


def _chat_frame(chat: OrderChat, event: ChatEvent) -> dict:
    return {
        "event": event.kind,
        "scroll_to_bottom": event.scroll_to_bottom,
        "state": chat.state.value,
        "has_more": chat.has_more,
        "error": chat.error,
        "messages": chat.snapshot()
    }


async def _handle_command(chat: OrderChat, command: ChatCommand) -> None:
    action = command.action
    if action == ChatAction.SEND:
        try:
            await chat.send(command.content)
        except ValueError as e:
            chat.report_error(str(e))
    elif action == ChatAction.RETRY:
        try:
            await chat.retry(command.local_id)
        except LookupError as e:
            logger.warning("Retry for unknown message", extra={"order_id": chat.order_id, "error": str(e)})
    elif action == ChatAction.LOAD_OLDER:
        await chat.load_older()
    elif action == ChatAction.SCROLL:
        chat.viewport.update(command.scroll_top, command.scroll_height, command.client_height)
    elif action == ChatAction.DISMISS_ERROR:
        chat.dismiss_error()


@router.websocket("/{order_id}/chat")
async def order_chat(
    websocket: WebSocket,
    order_id: str,
    client_id: str = Query(""),
    registry: ClientRegistry = Depends(get_registry),
    gateway: GatewayClient = Depends(get_gateway),
    realtime: RealtimeChannel = Depends(get_realtime)
):
    """
    Live support chat for one order.

    Inbound frames are commands (``send``, ``retry``, ``load_older``,
    ``scroll``, ``dismiss_error``). Outbound frames carry the full message
    view after every change.
    """
    try:
        client_id = validate_client_id(client_id)
    except ValueError as e:
        await websocket.close(code=POLICY_VIOLATION, reason=str(e))
        return
    bind_client_id(client_id)
    client = await registry.open(client_id)
    if not client.identity.is_authenticated:
        await websocket.close(code=POLICY_VIOLATION, reason="Please log in to continue.")
        return
    gateway = gateway.bind(client.identity.access_token)
    try:
        await OrderService(gateway).get_order_for_viewer(order_id, client.identity)
    except (LookupError, PermissionError) as e:
        await websocket.close(code=POLICY_VIOLATION, reason=str(e))
        return

    await websocket.accept()
    # frames are rendered when the change happens, then sent in order
    outbox: "asyncio.Queue[dict]" = asyncio.Queue()
    chat = OrderChat(gateway, realtime, order_id, client.identity.user_id)
    chat.on_change = lambda event: outbox.put_nowait(_chat_frame(chat, event))

    async def forward() -> None:
        while True:
            await websocket.send_json(await outbox.get())

    forwarder = asyncio.create_task(forward())
    commands: Set[asyncio.Task] = set()
    logger.info("Order chat opened", extra={"order_id": order_id, "user_id": client.identity.user_id})
    try:
        await chat.open()
        while True:
            try:
                command = ChatCommand.model_validate(await websocket.receive_json())
            except (ValueError, ValidationError) as e:
                logger.warning("Ignoring invalid chat command", extra={"order_id": order_id, "error": str(e)})
                continue
            task = asyncio.create_task(_handle_command(chat, command))
            commands.add(task)
            task.add_done_callback(commands.discard)
    except WebSocketDisconnect:
        logger.info("Order chat closed", extra={"order_id": order_id, "user_id": client.identity.user_id})
    finally:
        try:
            await chat.close()
        finally:
            forwarder.cancel()
            for task in list(commands):
                task.cancel()
