from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session
from salon_checkout.auth_local import decode_access_token, identity_from_claims
from salon_checkout.core.logging_config import set_request_context
from salon_checkout.domain.permissions import Identity, can
from salon_checkout.infrastructure.db import get_db
from salon_checkout.infrastructure.payments import PaymentGateway, get_payment_gateway
from salon_checkout.application.ledger import OrderLedger
from salon_checkout.application.reconciler import PaymentReconciler

BEARER_PREFIX = "bearer "

async def get_current_identity(request: Request) -> Identity:
    auth_header = request.headers.get("Authorization") or ""
    if not auth_header.lower().startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Unauthorized")
    claims = decode_access_token(auth_header[len(BEARER_PREFIX):].strip())
    identity = identity_from_claims(claims) if claims else None
    if identity is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    # Must stay async: a sync dependency would set this in a discarded threadpool context
    set_request_context(user_id=str(identity.id))
    return identity

def require_permission(module: str, action: str):
    def checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        if not can(identity, module, action):
            raise HTTPException(status_code=403, detail="Forbidden")
        return identity
    return checker

def get_ledger(db: Session = Depends(get_db)) -> OrderLedger:
    return OrderLedger(db)

def get_reconciler(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> PaymentReconciler:
    return PaymentReconciler(db, gateway)
