"""
Entry-fee and prize payment records.

The mobile-money gateway itself is an injected collaborator; this module
only keeps payment records and reacts to the gateway's STK callback. A
completed entry fee is the trigger that registers the payer in the
tournament, through tournaments.add_participant().

Callback handling never raises: the gateway retries aggressively on error
responses, so every failure is logged, written to the operation log for
manual reconciliation, and still acknowledged.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from efhub.config import settings
from efhub.db.models import OperationLog, Participant, Payment, Player
from efhub.errors import (
    ConflictError,
    EfhubError,
    NotFoundError,
    ValidationError,
)
from efhub.players.phone import normalize_phone
from efhub.services.actors import Actor, require_admin, require_player
from efhub.services.tournaments import add_participant, get_tournament

logger = logging.getLogger(__name__)

CALLBACK_OPERATION = "payment_callback"
REGISTRATION_OPERATION = "entry_registration"


class PaymentGateway(Protocol):
    def stk_push(self, phone: str, amount: int, reference: str, description: str) -> dict:
        """Send an STK push; returns the gateway response (MerchantRequestID, CheckoutRequestID, ...)."""
        ...


def make_reference(prefix: str, player_id: int, tournament_id: int) -> str:
    """'<PREFIX>_<player>_<tournament>_<epoch-ms>'"""
    return f"{prefix}_{player_id}_{tournament_id}_{int(time.time() * 1000)}"


def initiate_entry_payment(
    session: Session,
    actor: Actor,
    tournament_id: int,
    phone: str,
    gateway: PaymentGateway,
) -> Payment:
    """
    Start an entry-fee payment with an STK push to the player's phone.

    Raises:
        ValidationError: Invalid phone number
        ConflictError: Free tournament, registration closed, or already registered
    """
    player_id = require_player(actor)
    normalized_phone = normalize_phone(phone)
    if normalized_phone is None:
        raise ValidationError("Invalid phone number. Use format 07XXXXXXXX or 2547XXXXXXXX")

    tournament = get_tournament(session, tournament_id)
    if tournament.entry_fee <= 0:
        raise ConflictError("This tournament is free; join it directly")
    if tournament.status != "upcoming" or tournament.registration_status() != "open":
        raise ConflictError("Registration is not open for this tournament")
    if any(p.player_id == player_id for p in tournament.participants):
        raise ConflictError("Player is already registered for this tournament")

    reference = make_reference(settings.entry_fee_reference_prefix, player_id, tournament.id)
    payment = Payment(
        transaction_id=reference,
        player_id=player_id,
        tournament_id=tournament.id,
        type="entry_fee",
        amount=tournament.entry_fee,
        status="pending",
        phone_number=normalized_phone,
        description=f"Entry fee for {tournament.name}",
    )
    session.add(payment)
    session.flush()

    response = gateway.stk_push(
        phone=normalized_phone,
        amount=int(tournament.entry_fee),
        reference=reference,
        description=payment.description,
    )
    payment.request_payload = response
    payment.merchant_request_id = response.get("MerchantRequestID")
    payment.checkout_request_id = response.get("CheckoutRequestID")
    if str(response.get("ResponseCode", "0")) != "0":
        payment.status = "failed"
        payment.notes = response.get("ResponseDescription") or response.get("errorMessage")
        logger.warning("STK push rejected for %s: %s", reference, payment.notes)
    session.flush()
    logger.info("Initiated entry payment %s for player %s", reference, player_id)
    return payment


def _callback_metadata(callback: dict) -> dict:
    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    return {item["Name"]: item.get("Value") for item in items if "Name" in item}


def _register_payer(session: Session, payment: Payment) -> None:
    """Register the payer; failures are noted on the payment for a refund."""
    try:
        with session.begin_nested():
            add_participant(session, payment.tournament_id, payment.player_id)
    except EfhubError as exc:
        payment.notes = f"Registration failed: {exc.message}"
        logger.warning("Paid entry %s could not be registered: %s", payment.transaction_id, exc.message)
        session.add(
            OperationLog(
                operation=REGISTRATION_OPERATION,
                details={"payment_id": payment.id, "tournament_id": payment.tournament_id},
                success=False,
                error_message=exc.message,
            )
        )


def _process_stk_callback(session: Session, payload: dict) -> Payment:
    callback = payload["Body"]["stkCallback"]
    checkout_id = callback.get("CheckoutRequestID")
    payment = session.scalars(
        select(Payment).where(Payment.checkout_request_id == checkout_id)
    ).first()
    if payment is None:
        raise NotFoundError(f"No payment for checkout request {checkout_id}")

    if payment.status == "completed":
        logger.info("Duplicate callback for completed payment %s ignored", payment.transaction_id)
        return payment

    payment.callback_payload = payload
    result_code = int(callback.get("ResultCode", -1))
    if result_code == 0:
        metadata = _callback_metadata(callback)
        payment.status = "completed"
        payment.receipt_number = metadata.get("MpesaReceiptNumber")
        if metadata.get("PhoneNumber"):
            payment.phone_number = str(metadata["PhoneNumber"])
        session.flush()
        logger.info("Payment %s completed (%s)", payment.transaction_id, payment.receipt_number)
        if payment.type == "entry_fee" and payment.tournament_id is not None:
            _register_payer(session, payment)
    else:
        payment.status = "failed"
        payment.notes = callback.get("ResultDesc")
        logger.info("Payment %s failed: %s", payment.transaction_id, payment.notes)
    session.flush()
    return payment


def handle_stk_callback(session: Session, payload) -> dict:
    """
    Process a gateway STK callback and return the acknowledgement body.

    Returns:
        {"ResultCode": 0, ...} when processed, {"ResultCode": 1, ...} when
        processing failed (the failure is in the operation log)
    """
    try:
        with session.begin_nested():
            _process_stk_callback(session, payload)
    except Exception as exc:
        # Acknowledge anyway so the gateway does not retry in a loop.
        logger.exception("STK callback processing failed")
        session.add(
            OperationLog(
                operation=CALLBACK_OPERATION,
                details={"payload": payload if isinstance(payload, dict) else repr(payload)},
                success=False,
                error_message=str(exc) or exc.__class__.__name__,
            )
        )
        session.flush()
        return {"ResultCode": 1, "ResultDesc": "Callback recorded for reconciliation"}
    return {"ResultCode": 0, "ResultDesc": "Accepted"}


def record_prize_payout(
    session: Session,
    actor: Actor,
    tournament_id: int,
    player_id: int,
    amount,
    phone: Optional[str] = None,
) -> Payment:
    """Record a completed prize payout (the transfer itself happens elsewhere)."""
    require_admin(actor, "record prize payouts")
    tournament = get_tournament(session, tournament_id)
    player = session.get(Player, player_id)
    if player is None:
        raise NotFoundError(f"Player {player_id} not found")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("amount must be a number")
    if value <= 0:
        raise ValidationError("amount must be positive")
    is_participant = session.scalar(
        select(Participant.id).where(
            Participant.tournament_id == tournament.id, Participant.player_id == player_id
        )
    )
    if is_participant is None:
        raise ConflictError("Prizes can only be paid to tournament participants")

    payment = Payment(
        transaction_id=make_reference(settings.prize_reference_prefix, player_id, tournament.id),
        player_id=player_id,
        tournament_id=tournament.id,
        type="prize_payout",
        amount=value,
        status="completed",
        phone_number=normalize_phone(phone) or player.phone,
        description=f"Prize payout for {tournament.name}",
    )
    session.add(payment)
    session.flush()
    logger.info("Recorded prize payout %s of %s", payment.transaction_id, value)
    return payment
