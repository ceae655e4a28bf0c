from datetime import datetime, timedelta

from sqlmodel import Session, select

from dealflow import storage
from dealflow.docusign import DocusignNetworkError
from dealflow.models import Deal, Offer, PartyProgress, SigningRecord
from dealflow.tracks import DealState, SellerStage, Track
from dealflow.utils import make_token


def auth_headers(user):
    return {"Authorization": f"Bearer {make_token({'user_id': user.id})}"}


OFFER_FORM = {
    "own_type": "0",
    "vested": "1",
    "restrictions": "0",
    "shares_total_own": "500",
    "stock_type": "1",
    "exercise_date": "2020-01-01",
    "exercise_price": "0.5",
    "shares_to_sell": "200",
    "desire_price": "3.0",
}


def sign(client, deal_id, user):
    return client.post(f"/api/deals/{deal_id}/sell/engagement-letter/sign", headers=auth_headers(user))


def check(client, deal_id, user):
    return client.post(f"/api/deals/{deal_id}/sell/engagement-letter/check", headers=auth_headers(user))


def signing_row(test_engine, deal_id, user_id):
    with Session(test_engine) as session:
        progress = session.exec(
            select(PartyProgress).where(PartyProgress.deal_id == deal_id, PartyProgress.user_id == user_id)
        ).one()
        record = session.exec(select(SigningRecord).where(SigningRecord.progress_id == progress.id)).one()
        return progress, record


def test_seller_end_to_end(client, make_user, make_deal, fake_docusign, mock_storage, sent_emails, test_engine):
    seller = make_user()
    deal = make_deal(shares_amount=1000)

    resp = sign(client, deal.id, seller)
    assert resp.status_code == 200
    body = resp.json()
    assert body["stage"] == SellerStage.ENGAGEMENT_STARTED
    assert body["envelope_id"] == "env-1"
    assert fake_docusign.url_calls == [("testserver", "env-1")]
    assert fake_docusign.created[0]["role"] == "client"
    assert fake_docusign.created[0]["client_user_id"] == str(seller.id)
    assert fake_docusign.created[0]["substitutions"]["company"] == "Acme Robotics"

    fake_docusign.status = (True, True)
    resp = check(client, deal.id, seller)
    assert resp.status_code == 200
    result = resp.json()
    assert result["advanced"] is True
    assert result["status"] == "completed"
    assert result["stage"] == SellerStage.ENGAGEMENT_LETTER_SIGNED
    assert len(result["document"]["token"]) == 64
    assert result["document"]["filename"] == "sell_engagement_letter.pdf"

    key = f"deals/{deal.id}/{seller.id}/sell_engagement_letter"
    assert key in mock_storage
    assert mock_storage[key] != fake_docusign.document
    assert sent_emails and sent_emails[0]["to"] == seller.email

    download = client.get(f"/api/deals/files/{result['document']['token']}")
    assert download.status_code == 200
    assert download.content == fake_docusign.document
    assert download.headers["content-type"] == "application/pdf"

    _, record = signing_row(test_engine, deal.id, seller.id)
    assert record.envelope_id == ""
    assert record.download_token == result["document"]["token"]

    resp = client.post(f"/api/deals/{deal.id}/sell/offer", data=OFFER_FORM, headers=auth_headers(seller))
    assert resp.status_code == 200
    assert resp.json()["stage"] == SellerStage.OFFER_CREATED
    assert resp.json()["completed"] is False

    files = {
        "share_certificate": ("cert.pdf", b"certificate", "application/pdf"),
        "company_by_laws": ("bylaws.png", b"bylaws", "image/png"),
        "shareholder_agreement": ("sha.pdf", b"agreement", "application/pdf"),
        "stock_option_plan": ("plan.bin", b"plan", "application/octet-stream"),
    }
    resp = client.post(f"/api/deals/{deal.id}/sell/offer", files=files, headers=auth_headers(seller))
    assert resp.status_code == 200
    body = resp.json()
    assert body["stage"] == SellerStage.OFFER_COMPLETED
    assert body["completed"] is True
    assert body["files"]["company_by_laws"]["filename"] == "company_by_laws.png"
    assert body["files"]["stock_option_plan"]["filename"] == "stock_option_plan"

    with Session(test_engine) as session:
        progress = session.exec(select(PartyProgress).where(PartyProgress.user_id == seller.id)).one()
        assert progress.shares == 200
        assert progress.amount == 500

    status = client.get(f"/api/deals/{deal.id}/sell", headers=auth_headers(seller))
    assert status.status_code == 200
    data = status.json()
    assert data["stage"] == SellerStage.OFFER_COMPLETED
    assert data["company_name"] == "Acme Robotics"
    assert data["signing_check_in_progress"] is False
    assert data["offer"]["shares_to_sell"] == 200
    assert set(data["files"]) == {
        "engagement_letter",
        "share_certificate",
        "company_by_laws",
        "shareholder_agreement",
        "stock_option_plan",
    }

    doc = client.get(f"/api/deals/files/{data['files']['company_by_laws']['token']}")
    assert doc.status_code == 200
    assert doc.content == b"bylaws"
    assert doc.headers["content-type"] == "image/png"

    # Status reads replace the previously issued tokens
    stale = client.get(f"/api/deals/files/{result['document']['token']}")
    assert stale.status_code == 404


def test_envelope_reused_until_expired(client, make_user, make_deal, fake_docusign, test_engine):
    seller = make_user()
    deal = make_deal()

    first = sign(client, deal.id, seller).json()
    second = sign(client, deal.id, seller).json()
    assert first["envelope_id"] == second["envelope_id"] == "env-1"
    assert len(fake_docusign.created) == 1
    assert len(fake_docusign.url_calls) == 2

    _, record = signing_row(test_engine, deal.id, seller.id)
    with Session(test_engine) as session:
        record = session.get(SigningRecord, record.id)
        record.expires_at = datetime.utcnow() - timedelta(minutes=1)
        session.add(record)
        session.commit()

    third = sign(client, deal.id, seller).json()
    assert third["envelope_id"] == "env-2"
    assert len(fake_docusign.created) == 2


def test_declined_envelope_resets_record(client, make_user, make_deal, fake_docusign, test_engine):
    seller = make_user()
    deal = make_deal()
    sign(client, deal.id, seller)

    fake_docusign.status = (False, True)
    resp = check(client, deal.id, seller)
    assert resp.status_code == 410
    assert resp.json()["error"] == "deal_signing_status_error"

    progress, record = signing_row(test_engine, deal.id, seller.id)
    assert record.envelope_id == ""
    assert record.expires_at is None
    assert progress.stage == SellerStage.ENGAGEMENT_STARTED

    # Restarting gets a brand new envelope
    assert sign(client, deal.id, seller).json()["envelope_id"] == "env-2"


def test_pending_check_waits_for_next_window(client, make_user, make_deal, fake_docusign, test_engine):
    seller = make_user()
    deal = make_deal()
    sign(client, deal.id, seller)

    resp = check(client, deal.id, seller)
    assert resp.status_code == 200
    assert resp.json() == {"advanced": False, "status": "pending", "stage": 0, "document": None}

    _, record = signing_row(test_engine, deal.id, seller.id)
    assert record.next_check_at > datetime.utcnow() + timedelta(minutes=14)
    assert record.envelope_id == "env-1"

    again = check(client, deal.id, seller)
    assert again.status_code == 409
    assert again.json()["error"] == "deal_signing_sign_error"
    assert fake_docusign.status_calls == 1


def test_download_failure_keeps_envelope(client, make_user, make_deal, fake_docusign, mock_storage, test_engine):
    seller = make_user()
    deal = make_deal()
    sign(client, deal.id, seller)

    fake_docusign.status = (True, True)
    fake_docusign.download_error = DocusignNetworkError("connection reset")
    resp = check(client, deal.id, seller)
    assert resp.status_code == 502
    assert resp.json()["error"] == "deal_signing_download_error"

    progress, record = signing_row(test_engine, deal.id, seller.id)
    assert record.envelope_id == "env-1"
    assert progress.stage == SellerStage.ENGAGEMENT_STARTED
    assert not mock_storage

    fake_docusign.download_error = None
    resp = check(client, deal.id, seller)
    assert resp.status_code == 200
    assert resp.json()["stage"] == SellerStage.ENGAGEMENT_LETTER_SIGNED


def test_signed_document_cannot_be_signed_again(client, make_user, make_deal, fake_docusign):
    seller = make_user()
    deal = make_deal()
    sign(client, deal.id, seller)
    fake_docusign.status = (True, True)
    assert check(client, deal.id, seller).status_code == 200

    resp = sign(client, deal.id, seller)
    assert resp.status_code == 409
    assert resp.json()["error"] == "deal_user_state_error"
    assert len(fake_docusign.created) == 1


def test_check_without_signing_is_rejected(client, make_user, make_deal, fake_docusign):
    seller = make_user()
    deal = make_deal()
    resp = check(client, deal.id, seller)
    assert resp.status_code == 409
    assert resp.json()["error"] == "deal_user_state_error"
    assert fake_docusign.status_calls == 0


def test_initiation_exclusive_across_tracks(client, make_user, make_deal, make_progress, fake_docusign):
    user = make_user()
    deal = make_deal()
    make_progress(user, deal, Track.SELL, SellerStage.ENGAGEMENT_STARTED)

    resp = client.post(f"/api/deals/{deal.id}/buy/engagement-letter/sign", headers=auth_headers(user))
    assert resp.status_code == 409
    assert resp.json()["error"] == "deal_already_selling"

    other = make_user(email="buyer@example.com", full_name="Bea Buyer")
    second_deal = make_deal(company_name="Beta Labs")
    make_progress(other, second_deal, Track.BUY, 0)
    resp = sign(client, second_deal.id, other)
    assert resp.status_code == 409
    assert resp.json()["error"] == "deal_already_buying"
    assert fake_docusign.created == []


def test_sign_requires_open_deal(client, make_user, make_deal):
    seller = make_user()
    deal = make_deal(state=DealState.PREVIEW)
    resp = sign(client, deal.id, seller)
    assert resp.status_code == 409
    assert resp.json()["error"] == "deal_not_live"

    assert sign(client, 9999, seller).status_code == 404


def test_offer_requires_all_fields_first(client, make_user, make_deal, make_progress):
    seller = make_user()
    deal = make_deal()
    make_progress(seller, deal, Track.SELL, SellerStage.ENGAGEMENT_LETTER_SIGNED)

    partial = {key: value for key, value in OFFER_FORM.items() if key != "shares_to_sell"}
    resp = client.post(f"/api/deals/{deal.id}/sell/offer", data=partial, headers=auth_headers(seller))
    assert resp.status_code == 422
    assert resp.json()["error"] == "bad_argument"


def test_offer_created_and_completed_in_one_call(client, make_user, make_deal, make_progress, test_engine):
    seller = make_user()
    deal = make_deal()
    make_progress(seller, deal, Track.SELL, SellerStage.ENGAGEMENT_LETTER_SIGNED)

    files = {
        name: (f"{name}.pdf", b"data", "application/pdf")
        for name in ("share_certificate", "company_by_laws", "shareholder_agreement", "stock_option_plan")
    }
    resp = client.post(f"/api/deals/{deal.id}/sell/offer", data=OFFER_FORM, files=files, headers=auth_headers(seller))
    assert resp.status_code == 200
    assert resp.json()["stage"] == SellerStage.OFFER_COMPLETED

    with Session(test_engine) as session:
        assert len(session.exec(select(Offer)).all()) == 1


def test_user_submitted_offer(client, make_user, test_engine):
    seller = make_user()
    resp = client.post("/api/deals/sell/new-offer", json={"company_name": "Stealth Co"}, headers=auth_headers(seller))
    assert resp.status_code == 201
    body = resp.json()
    assert body["stage"] == SellerStage.ENGAGEMENT_LETTER_SIGNED

    again = client.post("/api/deals/sell/new-offer", json={"company_name": "stealth co"}, headers=auth_headers(seller))
    assert again.status_code == 409
    assert again.json()["error"] == "deal_already_offering"

    other = make_user(email="other@example.com", full_name="Otto Other")
    resp = client.post("/api/deals/sell/new-offer", json={"company_name": "STEALTH CO"}, headers=auth_headers(other))
    assert resp.status_code == 201
    assert resp.json()["deal_id"] == body["deal_id"]

    offer = client.post(f"/api/deals/{body['deal_id']}/sell/offer", data=OFFER_FORM, headers=auth_headers(seller))
    assert offer.status_code == 200
    assert offer.json()["stage"] == SellerStage.OFFER_CREATED

    with Session(test_engine) as session:
        deal = session.get(Deal, body["deal_id"])
        assert deal.state == DealState.USER_SUBMITTED
        assert deal.company_id is None


def test_sell_status_without_progress(client, make_user, make_deal):
    seller = make_user()
    deal = make_deal()
    resp = client.get(f"/api/deals/{deal.id}/sell", headers=auth_headers(seller))
    assert resp.status_code == 200
    assert resp.json()["stage"] == -1


def test_requests_need_a_valid_token(client, make_deal):
    deal = make_deal()
    assert client.get(f"/api/deals/{deal.id}/sell").status_code == 401
    resp = client.get(f"/api/deals/{deal.id}/sell", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 403


def test_download_rejects_malformed_token(client):
    assert client.get("/api/deals/files/not-a-token").status_code == 404
    assert client.get("/api/deals/files/" + "a" * 64).status_code == 404


def test_offer_upload_storage_outage(client, make_user, make_deal, make_progress, monkeypatch, test_engine):
    seller = make_user()
    deal = make_deal()
    progress = make_progress(seller, deal, Track.SELL, SellerStage.OFFER_CREATED)
    with Session(test_engine) as session:
        session.add(Offer(user_id=seller.id, company_id=deal.company_id, deal_id=deal.id))
        session.commit()

    def unreachable(key, data, content_type="application/octet-stream"):
        raise ConnectionRefusedError("minio:9000")

    monkeypatch.setattr(storage, "put_bytes", unreachable)
    files = {"share_certificate": ("cert.pdf", b"data", "application/pdf")}
    resp = client.post(f"/api/deals/{deal.id}/sell/offer", files=files, headers=auth_headers(seller))
    assert resp.status_code == 500
    assert resp.json()["error"] == "deal_operation_error"
    with Session(test_engine) as session:
        assert session.get(PartyProgress, progress.id).stage == SellerStage.OFFER_CREATED
        assert session.exec(select(Offer)).one().share_certificate_name == ""
