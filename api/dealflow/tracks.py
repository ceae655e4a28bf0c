"""Seller and buyer track descriptors.

Both tracks are fixed, ordered stage sequences. A ``TrackDescriptor`` bundles
the stage enum with the documents a party signs on that track, so that the
signing, polling and state-check code is written once and parametrized by
track.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Dict, Optional

from .config import DOCUSIGN_TEMPLATES
from .crypto import dec_field
from .errors import InputError
from .utils import format_money, format_roman


class Track(str, Enum):
    SELL = "sell"
    BUY = "buy"


class DealState(IntEnum):
    OPEN = 0
    PREVIEW = 1
    CLOSED = 2
    USER_SUBMITTED = 3


class SharesType(IntEnum):
    PREFERRED = 0
    COMMON = 1


class AccountType(IntEnum):
    CHECKING = 0
    SAVING = 1


class OwnType(IntEnum):
    SHARES = 0
    RSU = 1
    OPTIONS = 2
    SHARES_RSU = 3
    SHARES_OPTIONS = 4
    RSU_OPTIONS = 5
    SHARES_RSU_OPTIONS = 6


class StockType(IntEnum):
    PREFERRED = 0
    COMMON = 1
    BOTH = 2
    OTHER = 3


class SellerStage(IntEnum):
    ENGAGEMENT_STARTED = 0
    ENGAGEMENT_LETTER_SIGNED = 1
    OFFER_CREATED = 2
    OFFER_COMPLETED = 3
    ADMIN_APPROVED_OFFER = 4
    BANK_INFO_SUBMITTED = 5
    BANK_VERIFIED = 6
    WAITING_COMPANY_ROFR = 7
    COMPANY_APPROVED_ROFR = 8
    PURCHASE_AGREEMENT_SIGNED = 9
    ADMIN_APPROVED_DEAL = 10
    DEAL_CLOSED = 11


class BuyerStage(IntEnum):
    ENGAGEMENT_STARTED = 0
    ENGAGEMENT_LETTER_SIGNED = 1
    INTEREST_SUBMITTED = 2
    SUMMARY_TERMS_SIGNED = 3
    ADMIN_APPROVED_INTEREST = 4
    BANK_INFO_SUBMITTED = 5
    BANK_VERIFIED = 6
    DE_PPM_SIGNED = 7
    DE_OPERATING_AGREEMENT_SIGNED = 8
    DE_SUBSCRIPTION_AGREEMENT_SIGNED = 9
    TAX_FORM_UPLOADED = 10
    ESCROW_STARTED = 11
    ESCROW_DOC_UPLOADED = 12
    WAITING_FUND_TRANSFER = 13
    WAITING_COMPANY_ROFR = 14
    COMPANY_APPROVED_ROFR = 15
    ESCROW_BROKE = 16
    ADMIN_APPROVED_DEAL = 17
    DEAL_CLOSED = 18


class DocKind(str, Enum):
    ENGAGEMENT_LETTER = "engagement_letter"
    SUMMARY_TERMS = "summary_terms"
    DE_PPM = "de_ppm"
    DE_OPERATING = "de_operating"
    DE_SUBSCRIPTION = "de_subscription"


SHARES_TYPE_TEXTS = {
    SharesType.PREFERRED: "Preferred Shares",
    SharesType.COMMON: "Common Shares",
}

# Subscription agreements carry a fixed expense on top of the principal
SUBSCRIPTION_EXPENSE_RATE = 0.05


@dataclass
class SigningContext:
    """Everything a template substitution builder may read."""

    user: object
    deal: object
    company: Optional[object]
    progress: Optional[object]

    @property
    def address(self) -> str:
        address = self.user.address1 or ""
        if self.user.address2:
            address += " " + self.user.address2
        return address

    @property
    def company_name(self) -> str:
        return self.company.name if self.company else self.deal.name

    @property
    def fund_name(self) -> str:
        return f"MarketX {self.company_name} Fund {format_roman(self.deal.fund_num)}, LLC"

    @property
    def shares_type(self) -> str:
        return SHARES_TYPE_TEXTS.get(SharesType(self.deal.shares_type), "")


def _engagement_letter(ctx: SigningContext) -> dict:
    return {
        "client_name": ctx.user.full_name,
        "address": ctx.address,
        "shares_type": ctx.shares_type,
        "company": ctx.company_name,
    }


def _summary_terms(ctx: SigningContext) -> dict:
    return {
        "client_name": ctx.user.full_name,
        "amount": ctx.progress.shares,
        "amount_all": ctx.deal.shares_amount,
        "shares_type": ctx.shares_type,
        "company": ctx.company_name,
        "closing_date": ctx.deal.end_date.strftime("%m/%d/%Y") if ctx.deal.end_date else "",
    }


def _de_ppm(ctx: SigningContext) -> dict:
    company = ctx.company
    return {
        "fund_name": ctx.fund_name,
        "actual_price": ctx.deal.actual_price,
        "actual_valuation": format_money(ctx.deal.actual_valuation),
        "last_price": company.last_conversion_price if company else 0,
        "last_valuation": format_money(company.last_post_valuation if company else 0),
        "last_valuation_date": company.last_funding_date if company else "",
        "shares_type": ctx.shares_type,
    }


def _de_operating(ctx: SigningContext) -> dict:
    return {
        "client_name": ctx.user.full_name,
        "fund_name": ctx.fund_name,
        "company": ctx.company_name,
        "company_state": ctx.company.state_founded if ctx.company else "",
        "shares_type": ctx.shares_type,
    }


def _de_subscription(ctx: SigningContext) -> dict:
    principal = ctx.progress.shares
    expense = int(principal * SUBSCRIPTION_EXPENSE_RATE)
    return {
        "client_name": ctx.user.full_name,
        "fund_name": ctx.fund_name,
        "amount_principal": principal,
        "amount_expense": expense,
        "amount_total": principal + expense,
        "ssn": dec_field(ctx.user.ssn_encrypted),
        "address": ctx.address,
        "phone_number": ctx.user.phone_number,
        "email": ctx.user.email,
    }


@dataclass(frozen=True)
class DocumentSpec:
    kind: DocKind
    template: str
    file_name: str
    min_stage: int
    signed_stage: int
    subject: str
    substitutions: Callable[[SigningContext], dict]
    # Only the first document of a track may create the progress record
    initiates: bool = False

    @property
    def template_id(self) -> str:
        return DOCUSIGN_TEMPLATES.get(self.template, "")


@dataclass(frozen=True)
class TrackDescriptor:
    track: Track
    stages: type
    documents: Dict[DocKind, DocumentSpec] = field(default_factory=dict)

    @property
    def first_stage(self) -> int:
        return min(self.stages)

    def document(self, kind: DocKind) -> DocumentSpec:
        try:
            return self.documents[kind]
        except KeyError:
            raise InputError(f"document {kind.value} is not signed on the {self.track.value} track")


SELL = TrackDescriptor(
    track=Track.SELL,
    stages=SellerStage,
    documents={
        DocKind.ENGAGEMENT_LETTER: DocumentSpec(
            kind=DocKind.ENGAGEMENT_LETTER,
            template="sell_engagement_letter",
            file_name="sell_engagement_letter",
            min_stage=SellerStage.ENGAGEMENT_STARTED,
            signed_stage=SellerStage.ENGAGEMENT_LETTER_SIGNED,
            subject="Please sign Engagement Letter - Seller.",
            substitutions=_engagement_letter,
            initiates=True,
        ),
    },
)


BUY = TrackDescriptor(
    track=Track.BUY,
    stages=BuyerStage,
    documents={
        DocKind.ENGAGEMENT_LETTER: DocumentSpec(
            kind=DocKind.ENGAGEMENT_LETTER,
            template="buy_engagement_letter",
            file_name="buy_engagement_letter",
            min_stage=BuyerStage.ENGAGEMENT_STARTED,
            signed_stage=BuyerStage.ENGAGEMENT_LETTER_SIGNED,
            subject="Please sign Engagement Letter - Buyer.",
            substitutions=_engagement_letter,
            initiates=True,
        ),
        DocKind.SUMMARY_TERMS: DocumentSpec(
            kind=DocKind.SUMMARY_TERMS,
            template="summary_of_terms",
            file_name="summary_of_terms",
            min_stage=BuyerStage.INTEREST_SUBMITTED,
            signed_stage=BuyerStage.SUMMARY_TERMS_SIGNED,
            subject="Please sign Summary of Terms.",
            substitutions=_summary_terms,
        ),
        DocKind.DE_PPM: DocumentSpec(
            kind=DocKind.DE_PPM,
            template="de_ppm",
            file_name="de_ppm",
            min_stage=BuyerStage.BANK_VERIFIED,
            signed_stage=BuyerStage.DE_PPM_SIGNED,
            subject="Please sign Delaware Private Placement Memorandum.",
            substitutions=_de_ppm,
        ),
        DocKind.DE_OPERATING: DocumentSpec(
            kind=DocKind.DE_OPERATING,
            template="de_operating_agreement",
            file_name="de_operating_agreement",
            min_stage=BuyerStage.DE_PPM_SIGNED,
            signed_stage=BuyerStage.DE_OPERATING_AGREEMENT_SIGNED,
            subject="Please sign Delaware Operating Agreement.",
            substitutions=_de_operating,
        ),
        DocKind.DE_SUBSCRIPTION: DocumentSpec(
            kind=DocKind.DE_SUBSCRIPTION,
            template="de_subscription_agreement",
            file_name="de_subscription_agreement",
            min_stage=BuyerStage.DE_OPERATING_AGREEMENT_SIGNED,
            signed_stage=BuyerStage.DE_SUBSCRIPTION_AGREEMENT_SIGNED,
            subject="Please sign Delaware Subscription Agreement.",
            substitutions=_de_subscription,
        ),
    },
)

TRACKS = {Track.SELL: SELL, Track.BUY: BUY}


def descriptor(track: Track) -> TrackDescriptor:
    return TRACKS[Track(track)]
