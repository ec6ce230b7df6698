"""Flip pending invitations whose token has lapsed to ``expired``.

Usage examples:

    python -m app.scripts.expire_invitations --dry-run
    python -m app.scripts.expire_invitations --execute

Expiry is already enforced lazily on every read and action; this sweep only
keeps the stored statuses tidy.
"""

from __future__ import annotations

import argparse
import logging

from app.database import SessionLocal
from app.models import FarmInvitation, InvitationStatus
from app.services.invitation_service import expire_stale_invitations, is_expired
from app.utils.clock import utcnow


logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mark stale farm invitations as expired")
    parser.add_argument("--execute", action="store_true", help="Persist changes (otherwise dry run)")
    parser.add_argument("--dry-run", action="store_true", help="Alias for leaving execute=false")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    execute = bool(args.execute and not args.dry_run)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    session = SessionLocal()
    try:
        now = utcnow()
        if not execute:
            pending = (
                session.query(FarmInvitation)
                .filter(FarmInvitation.status == InvitationStatus.PENDING)
                .all()
            )
            stale = [invitation for invitation in pending if is_expired(invitation, now)]
            logger.info("Dry run: %d of %d pending invitation(s) are stale", len(stale), len(pending))
            logger.info("Running in dry-run mode. Use --execute to persist changes.")
            return

        expired = expire_stale_invitations(session, now=now)
        logger.info("Sweep complete: %d invitation(s) expired", expired)
    finally:
        session.close()


if __name__ == "__main__":
    main()
