from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

import structlog
from sqlalchemy import or_, update
from sqlmodel import select

from ..core.db import Assignment, Store, Token
from ..core.errors import DenyReason, MissingQuotaEntryError
from ..core.models import Role

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None


ALLOWED = Decision(True)


def denied(reason: DenyReason) -> Decision:
    return Decision(False, reason)


def can_run_tests(role: Optional[Role], is_member: bool, consume_quota: Callable[[], Decision]) -> Decision:
    """Role bypass, then group membership, then quota.

    ``consume_quota`` is only called for members, so an outsider never spends
    (or even looks at) the group's tokens. ``role`` is None for an unknown or
    unauthenticated requester, who is treated as an outsider.
    """
    if role in (Role.ADMIN, Role.TA):
        return ALLOWED
    if not is_member:
        return denied(DenyReason.NOT_A_GROUP_MEMBER)
    return consume_quota()


class QuotaLedger:
    """Daily test tokens per grouping.

    Both the daily reset and the decrement are single conditional UPDATE
    statements, so concurrent requests (threads or processes) cannot both
    reset, and cannot take the balance below zero.
    """

    def __init__(self, store: Store, today: Callable[[], date] = date.today):
        self.store = store
        self.today = today

    def _reset_if_new_day(self, s, grouping_id: int, assignment: Assignment, today: date) -> bool:
        stmt = (
            update(Token)
            .where(Token.grouping_id == grouping_id)
            .where(or_(Token.last_token_used_date.is_(None), Token.last_token_used_date < today))
            .values(tokens=assignment.tokens_per_day, last_token_used_date=today)
        )
        return s.execute(stmt).rowcount > 0

    def balance(self, grouping_id: int, assignment: Assignment) -> Optional[int]:
        """Current balance after the lazy reset; None when tokens are unlimited."""
        if assignment.unlimited_tokens:
            return None
        today = self.today()
        with self.store.session() as s:
            token = s.exec(select(Token).where(Token.grouping_id == grouping_id)).first()
            if token is None:
                raise MissingQuotaEntryError(grouping_id)
            if self._reset_if_new_day(s, grouping_id, assignment, today):
                log.info("tokens_reset", grouping_id=grouping_id, tokens=assignment.tokens_per_day)
            s.commit()
            s.refresh(token)
            return token.tokens

    def check_and_consume(self, grouping_id: int, assignment: Assignment) -> Decision:
        if assignment.unlimited_tokens:
            return ALLOWED

        today = self.today()
        with self.store.session() as s:
            exists = s.exec(select(Token.id).where(Token.grouping_id == grouping_id)).first()
            if exists is None:
                raise MissingQuotaEntryError(grouping_id)

            if self._reset_if_new_day(s, grouping_id, assignment, today):
                log.info("tokens_reset", grouping_id=grouping_id, tokens=assignment.tokens_per_day)

            consumed = s.execute(
                update(Token)
                .where(Token.grouping_id == grouping_id)
                .where(Token.tokens > 0)
                .values(tokens=Token.tokens - 1)
            ).rowcount
            s.commit()

        if consumed:
            return ALLOWED
        return denied(DenyReason.QUOTA_EXHAUSTED)

    def refund(self, grouping_id: int, assignment: Assignment) -> None:
        """Give back a token taken by :meth:`check_and_consume` for a run that never got queued."""
        if assignment.unlimited_tokens:
            return
        with self.store.session() as s:
            s.execute(
                update(Token)
                .where(Token.grouping_id == grouping_id)
                .values(tokens=Token.tokens + 1)
            )
            s.commit()
        log.info("token_refunded", grouping_id=grouping_id)
