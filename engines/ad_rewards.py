"""Two-phase rewarded-ad flow.

Watching an ad to the end only issues a ticket. The reward is applied when
the ticket is claimed, and the ticket's own ``claimed`` flag makes that
happen at most once, however often the client retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Callable, Dict, Optional
from uuid import uuid4

from engines import ledger
from engines.errors import AlreadyClaimed, UnknownTicket
from schemas import AdTicket, LearnerProgress

logger = logging.getLogger(__name__)


class RewardKind(str, Enum):
    CREDITS = "credits"
    LIFE = "life"
    XP = "xp"


AD_REWARDS: Dict[RewardKind, int] = {
    RewardKind.CREDITS: 2,
    RewardKind.LIFE: 1,
    RewardKind.XP: 50,
}


@dataclass
class TicketIssued:
    progress: LearnerProgress
    ticket_id: str
    duplicate: bool = False


@dataclass
class TicketClaim:
    progress: LearnerProgress
    ticket_id: str
    reward_kind: RewardKind
    amount: int


def issue_ticket(
    progress: LearnerProgress,
    now: datetime,
    id_factory: Callable[[], str] = lambda: uuid4().hex,
    nonce: Optional[str] = None,
) -> TicketIssued:
    """Issue a ticket for a finished ad.

    A completion report carrying a ``nonce`` is consumed once: reporting the
    same nonce again returns the ticket it already produced, claimed or not.
    """

    if nonce:
        for existing_id, ticket in progress.ad_tickets.items():
            if ticket.nonce == nonce:
                logger.info(
                    "Ad report %s for %s already issued ticket %s", nonce, progress.learner_id, existing_id
                )
                return TicketIssued(progress, existing_id, duplicate=True)

    ticket_id = id_factory()
    while ticket_id in progress.ad_tickets:
        ticket_id = id_factory()
    updated = progress.model_copy(deep=True)
    updated.ad_tickets[ticket_id] = AdTicket(issued_at=now, nonce=nonce or None)
    return TicketIssued(updated, ticket_id)


def claim_ticket(
    progress: LearnerProgress,
    ticket_id: str,
    reward_kind: RewardKind | str,
    now: Optional[datetime] = None,
) -> TicketClaim:
    kind = RewardKind(reward_kind)
    ticket = progress.ad_tickets.get(ticket_id)
    if ticket is None:
        raise UnknownTicket(f"ad ticket {ticket_id} was never issued", details={"ticket_id": ticket_id})
    if ticket.claimed:
        raise AlreadyClaimed(f"ad ticket {ticket_id} was already claimed", details={"ticket_id": ticket_id})

    amount = AD_REWARDS[kind]
    if kind is RewardKind.CREDITS:
        result = ledger.grant_credits(progress, amount)
    elif kind is RewardKind.LIFE:
        result = ledger.grant_lives(progress, amount)
    else:
        result = ledger.grant_xp(progress, amount)

    updated = result.progress
    claimed = updated.ad_tickets[ticket_id]
    claimed.claimed = True
    claimed.claimed_at = now
    claimed.reward_kind = kind.value
    logger.debug("Ticket %s claimed for %s (%s +%d)", ticket_id, updated.learner_id, kind.value, result.amount)
    return TicketClaim(updated, ticket_id, kind, result.amount)


def tickets_issued_on(progress: LearnerProgress, day: date, tz=None) -> int:
    """Number of ad tickets issued on ``day`` (the "videos watched today" counter)."""

    count = 0
    for ticket in progress.ad_tickets.values():
        issued = ticket.issued_at.astimezone(tz) if tz is not None else ticket.issued_at
        if issued.date() == day:
            count += 1
    return count
