from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


# Auth
class RegisterRequest(BaseModel):
    email: str
    password: str = Field(min_length=6)
    account_name: str


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


# Licensing
class LicenseVerifyResponse(BaseModel):
    valid: bool
    expires_at: Optional[str] = None
    is_trial: bool = False
    days_remaining: Optional[int] = None
    can_edit: bool = False


# Checkout
class PlanSummary(BaseModel):
    id: str
    name: str
    price_cents: int
    days_duration: int


class PlanListItem(PlanSummary):
    provider: str
    provider_link: str


class PlanListResponse(BaseModel):
    plans: List[PlanListItem]


class CheckoutSessionResponse(BaseModel):
    sessionId: str
    providerLink: str
    plan: PlanSummary


class PaymentStatusResponse(BaseModel):
    status: str  # created, paid, failed, expired
    expires_at: Optional[str] = None
    created_at: Optional[str] = None
    plan_id: str


# Webhook
class WebhookResponse(BaseModel):
    success: bool
    new_expiration: Optional[str] = None
    applied: bool
    message: str
