from typing import Optional
from datetime import datetime
from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import SQLModel, Field as ORMField

class User(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    email: str = ORMField(index=True)
    full_name: str
    address1: str = ""
    address2: str = ""
    phone_number: str = ""
    ssn_encrypted: str = ""
    is_admin: bool = False
    last_language: str = "en-US"

class Company(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    name: str
    state_founded: str = ""
    # latest funding snapshot, used by the private placement memorandum
    last_conversion_price: float = 0.0
    last_post_valuation: float = 0.0
    last_funding_date: str = ""

class Deal(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("shares_left >= 0 AND shares_left <= shares_amount", name="ck_deal_shares_left"),
    )

    id: Optional[int] = ORMField(default=None, primary_key=True)
    company_id: Optional[int] = ORMField(default=None, index=True)
    name: str = ""
    state: int = 0  # DealState
    special: int = 0
    fund_num: int = 1
    note: str = ""
    shares_amount: int = 0
    shares_left: int = 0
    shares_type: int = 0  # SharesType
    actual_price: float = 0.0
    actual_valuation: float = 0.0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    escrow_account: str = ""
    escrow_account_cn: str = ""

class PartyProgress(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "deal_id", "track", name="uq_party_progress"),)

    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    deal_id: int = ORMField(index=True)
    track: str  # sell|buy
    stage: int = 0
    shares: int = 0  # shares to sell or to buy
    amount: int = 0  # dollar amount derived from shares
    bank_id: Optional[int] = ORMField(default=None, index=True)
    committed_shares: int = 0  # shares taken off the deal at close
    purchase_committed_at: Optional[datetime] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)
    updated_at: datetime = ORMField(default_factory=datetime.utcnow)

class SigningRecord(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("progress_id", "doc_kind", name="uq_signing_record"),)

    id: Optional[int] = ORMField(default=None, primary_key=True)
    progress_id: int = ORMField(index=True)
    doc_kind: str
    envelope_id: str = ""  # empty means not started
    embedded_url: str = ""
    expires_at: Optional[datetime] = None
    next_check_at: Optional[datetime] = None
    download_token: str = ORMField(default="", index=True)
    signed_at: Optional[datetime] = None

class Offer(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    company_id: Optional[int] = ORMField(default=None, index=True)
    deal_id: int = ORMField(index=True)
    own_type: int = 0
    vested: int = 0
    restrictions: int = 0
    shares_total_own: int = 0
    stock_type: int = 0
    exercise_date: str = ""
    exercise_price: float = 0.0
    shares_to_sell: int = 0
    desire_price: float = 0.0
    share_certificate_key: str = ""
    share_certificate_name: str = ""
    share_certificate_type: str = ""
    share_certificate_token: str = ORMField(default="", index=True)
    company_by_laws_key: str = ""
    company_by_laws_name: str = ""
    company_by_laws_type: str = ""
    company_by_laws_token: str = ORMField(default="", index=True)
    shareholder_agreement_key: str = ""
    shareholder_agreement_name: str = ""
    shareholder_agreement_type: str = ""
    shareholder_agreement_token: str = ORMField(default="", index=True)
    stock_option_plan_key: str = ""
    stock_option_plan_name: str = ""
    stock_option_plan_type: str = ""
    stock_option_plan_token: str = ORMField(default="", index=True)
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class BankInfo(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    full_name: str
    nick_name: str = ""
    routing_number_encrypted: str
    account_number_encrypted: str
    account_type: int = 0  # AccountType
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

OFFER_DOCUMENTS = (
    "share_certificate",
    "company_by_laws",
    "shareholder_agreement",
    "stock_option_plan",
)
