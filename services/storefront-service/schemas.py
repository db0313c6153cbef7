"""Pydantic schemas for gateway records and request/response validation."""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OrderStatus(str, Enum):
    """Order lifecycle status; only admins change it."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class ProductType(str, Enum):
    ACCOUNT = "account"
    KEY = "key"
    SERVICE = "service"


class TournamentStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    FINISHED = "finished"


class ChatAction(str, Enum):
    SEND = "send"
    RETRY = "retry"
    LOAD_OLDER = "load_older"
    SCROLL = "scroll"
    DISMISS_ERROR = "dismiss_error"


class GatewayRecord(BaseModel):
    """Base for rows read from gateway collections."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


# --- Gateway records ---

class Product(GatewayRecord):
    """Catalog product."""
    id: str
    name: str
    description: str = ""
    price_dh: Decimal
    category: str
    stock: int = 0
    image_url: Optional[str] = None
    type: ProductType = ProductType.KEY


class UserProfile(GatewayRecord):
    """Profile row owned by the identity holder."""
    id: str
    email: str = ""
    username: str = ""
    wallet_balance: Decimal = Decimal("0")
    discord_points: int = 0
    role: Role = Role.USER
    avatar_url: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class Order(GatewayRecord):
    """Order row, optionally joined with its product."""
    id: str
    user_id: str
    product_id: str
    status: OrderStatus = OrderStatus.PENDING
    price_paid: Decimal = Decimal("0")
    points_earned: int = 0
    created_at: datetime
    product: Optional[Product] = None


class Message(GatewayRecord):
    """Persisted order chat message."""
    id: str
    order_id: str
    sender_id: str
    content: str
    created_at: datetime


class Tournament(GatewayRecord):
    id: str
    title: str
    description: str = ""
    role_required: str = ""
    prize_pool: str = ""
    status: TournamentStatus = TournamentStatus.UPCOMING
    date: str


class TournamentRegistration(GatewayRecord):
    id: str
    tournament_id: str
    user_id: str
    in_game_name: str
    discord_username: str
    team_name: Optional[str] = None


class PointShopItem(GatewayRecord):
    id: str
    name: str
    description: str = ""
    cost_points: int
    image_url: Optional[str] = None


class WalletHistoryEntry(GatewayRecord):
    id: str
    user_id: str
    amount: Decimal
    type: str
    description: str = ""
    created_at: Optional[datetime] = None


# --- Cart and checkout ---

class CartItem(BaseModel):
    """Cart entry with the product snapshot taken at add time."""
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int = Field(..., ge=1)
    image_url: Optional[str] = None
    category: str = ""
    type: ProductType = ProductType.KEY

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class CheckoutLine(BaseModel):
    """One line of the checkout procedure payload."""
    id: str
    quantity: int


class CheckoutResult(BaseModel):
    """Result of the gateway's atomic checkout procedure."""
    model_config = ConfigDict(extra="ignore")

    success: bool
    new_balance: Optional[Decimal] = None
    points_earned: int = 0
    message: Optional[str] = None

    @model_validator(mode="after")
    def _require_balance_on_success(self):
        if self.success and self.new_balance is None:
            raise ValueError("successful checkout result is missing new_balance")
        return self


# --- Requests ---

class LoginRequest(BaseModel):
    email: str
    password: str


class SignUpRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    username: str = Field(..., min_length=1)


class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartItemRequest(BaseModel):
    quantity: int


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1)


class ChatCommand(BaseModel):
    """Inbound order chat WebSocket frame."""
    action: ChatAction
    content: str = ""
    local_id: str = ""
    scroll_top: float = 0
    scroll_height: float = 0
    client_height: float = 0


class DepositRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    payment_reference: Optional[str] = None


class RegistrationRequest(BaseModel):
    in_game_name: str = ""
    discord_username: str = ""
    team_name: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str


class ProductCreate(BaseModel):
    name: str
    description: str = ""
    price_dh: Decimal = Field(..., ge=0)
    category: str
    stock: int = Field(0, ge=0)
    image_url: Optional[str] = None
    type: ProductType = ProductType.KEY


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price_dh: Optional[Decimal] = Field(None, ge=0)
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = None
    type: Optional[ProductType] = None


class TournamentCreate(BaseModel):
    title: str
    description: str = ""
    role_required: str = ""
    prize_pool: str = ""
    date: str
    status: TournamentStatus = TournamentStatus.UPCOMING


class TournamentStatusUpdate(BaseModel):
    status: TournamentStatus


class AssistantRequest(BaseModel):
    message: str = Field(..., min_length=1)


# --- Responses ---

class SessionResponse(BaseModel):
    authenticated: bool
    profile: Optional[UserProfile] = None
    message: Optional[str] = None


class CartResponse(BaseModel):
    items: List[CartItem]
    count: int
    total: Decimal


class CheckoutResponse(BaseModel):
    status: str
    message: str
    new_balance: Optional[Decimal] = None
    points_earned: int = 0
    redirect: Optional[str] = None


class ChatPageResponse(BaseModel):
    messages: List[Message]
    has_more: bool


class DepositQuote(BaseModel):
    amount: Decimal
    fee: Decimal
    total: Decimal
    points: int


class BalanceOperationResponse(BaseModel):
    profile: UserProfile
    message: str
    history_recorded: bool


class AssistantResponse(BaseModel):
    text: str


class AssistantHistoryEntry(BaseModel):
    role: str
    content: str
