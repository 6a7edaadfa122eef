"""Share tokens: revocable capability links to a customer's account snapshot.

Tokens are random hex strings (`settings.share_token_bytes` bytes, at least
128 bits). Reissuing replaces the previous token in the same write, so the
old link dies the moment the new one exists. Unknown, revoked and inactive
tokens all resolve the same way: NotFound.
"""

from __future__ import annotations

import logging
import secrets

from cuentas.core.errors import InvalidStateError, NotFoundError
from cuentas.db.dal import Database
from cuentas.services.customer_locks import customer_lock

logger = logging.getLogger("cuentas.share")

_MAX_ATTEMPTS = 10


class ShareTokenService:
    def __init__(self, db: Database, token_bytes: int = 16):
        if token_bytes < 16:
            raise ValueError("share tokens need at least 16 random bytes")
        self.db = db
        self.token_bytes = token_bytes

    def issue(self, customer_id: int) -> str:
        with customer_lock(customer_id), self.db.transaction() as cur:
            if not self.db.get_customer(customer_id, cur=cur):
                raise NotFoundError(f"customer {customer_id} not found")
            for _ in range(_MAX_ATTEMPTS):
                token = secrets.token_hex(self.token_bytes)
                if not self.db.share_token_taken(cur, token):
                    break
            else:
                raise InvalidStateError("could not allocate a unique share token")
            self.db.set_share_token(cur, customer_id, token)
        logger.info("share token issued", extra={"customer_id": customer_id})
        return token

    def revoke(self, customer_id: int) -> None:
        with customer_lock(customer_id), self.db.transaction() as cur:
            if not self.db.get_customer(customer_id, cur=cur):
                raise NotFoundError(f"customer {customer_id} not found")
            self.db.set_share_token(cur, customer_id, None)
        logger.info("share token revoked", extra={"customer_id": customer_id})

    def resolve(self, token: str) -> int:
        row = self.db.get_customer_by_token(token) if token else None
        if not row:
            raise NotFoundError("account not found")
        return int(row["id"])
