from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .tracks import AccountType, OwnType, StockType


class OfferCreate(BaseModel):
    own_type: int = Field(ge=0, le=int(max(OwnType)))
    vested: int = Field(ge=0, le=1)
    restrictions: int = Field(ge=0, le=1)
    shares_total_own: int = Field(ge=0)
    stock_type: int = Field(ge=0, le=int(max(StockType)))
    exercise_date: str = ""
    exercise_price: float = Field(default=0.0, ge=0)
    shares_to_sell: int = Field(gt=0)
    desire_price: float = Field(default=0.0, ge=0)


class OfferUpload(BaseModel):
    name: str  # share_certificate, company_by_laws, ...
    content: bytes
    content_type: str = ""


class NewOfferCreate(BaseModel):
    company_name: str = Field(min_length=1)


class InterestCreate(BaseModel):
    shares: int = Field(gt=0)


class BankInfoCreate(BaseModel):
    full_name: str = Field(min_length=1)
    nick_name: str = ""
    routing_number: str = Field(min_length=1)
    account_number: str = Field(min_length=1)
    account_type: int = Field(default=0, ge=0, le=int(max(AccountType)))


class PartyUpdate(BaseModel):
    stage: Optional[int] = None
    shares: Optional[int] = Field(default=None, ge=0)


class FileToken(BaseModel):
    token: str
    filename: str


class SigningUrlResult(BaseModel):
    url: str
    envelope_id: str
    stage: int
    expires_at: Optional[datetime] = None


class CompletionResult(BaseModel):
    advanced: bool
    status: str  # completed|pending
    stage: int
    document: Optional[FileToken] = None


class OfferResult(BaseModel):
    stage: int
    offer_id: int
    completed: bool = False
    files: Dict[str, FileToken] = {}


class NewOfferResult(BaseModel):
    stage: int
    deal_id: int


class InterestResult(BaseModel):
    stage: int
    shares: int
    amount: int


class BankInfoResult(BaseModel):
    stage: int
    bank_id: int
    reused: bool


class BankInfoOut(BaseModel):
    full_name: str
    nick_name: str
    routing_number: str
    account_number: str
    account_type: int


class OfferOut(BaseModel):
    own_type: int
    vested: int
    restrictions: int
    shares_total_own: int
    stock_type: int
    exercise_date: str
    exercise_price: float
    shares_to_sell: int
    desire_price: float


class SellStatus(BaseModel):
    stage: int
    signing_check_in_progress: bool = False
    company_name: str = ""
    files: Dict[str, FileToken] = {}
    offer: Optional[OfferOut] = None
    bank: Optional[BankInfoOut] = None


class BuyStatus(BaseModel):
    stage: int
    signing_check_in_progress: bool = False
    company_name: str = ""
    shares: Optional[int] = None
    files: Dict[str, FileToken] = {}
    bank: Optional[BankInfoOut] = None
    wire: Optional[str] = None


class PartyOut(BaseModel):
    id: int
    user_id: int
    deal_id: int
    track: str
    stage: int
    stage_name: str
    shares: int
    amount: int
    bank_id: Optional[int] = None
    updated_at: datetime


class PartyList(BaseModel):
    parties: List[PartyOut]
