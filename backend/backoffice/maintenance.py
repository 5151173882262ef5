"""Operator commands.

    python -m backoffice.maintenance setup-admin ops@example.com
    python -m backoffice.maintenance sync-documents
    python -m backoffice.maintenance purge-preapprovals
"""
import argparse
import logging
import sys

from sqlalchemy.orm import Session

from backoffice.core.config import get_settings
from backoffice.core.errors import AppError
from backoffice.db.session import SessionLocal
from backoffice.services.documents import sync_documents
from backoffice.services.preapprovals import purge_expired_preapprovals
from backoffice.services.provisioning import provision_admin
from backoffice.storage.object_store import ObjectStore

logger = logging.getLogger("backoffice.maintenance")


def _setup_admin(db: Session, args: argparse.Namespace) -> int:
    emails = args.emails or get_settings().admin_emails
    if not emails:
        raise SystemExit("Pass at least one email or set ADMIN_EMAILS.")
    for email in emails:
        outcome = provision_admin(db, email, roles=args.role)
        print(f"{email.strip().lower()}: {outcome}")
    return 0


def _sync_documents(db: Session, _args: argparse.Namespace) -> int:
    result = sync_documents(db, ObjectStore.from_settings(get_settings()))
    print(f"checked={result['checked']} orphaned={result['orphaned']}")
    return 0


def _purge_preapprovals(db: Session, _args: argparse.Namespace) -> int:
    print(f"deleted={purge_expired_preapprovals(db)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="backoffice.maintenance", description="Back office maintenance commands.")
    commands = parser.add_subparsers(dest="command", required=True)

    setup_admin = commands.add_parser("setup-admin", help="Promote or preapprove admin accounts")
    setup_admin.add_argument("emails", nargs="*", help="Emails to provision (default: ADMIN_EMAILS)")
    setup_admin.add_argument("--role", default="admin", choices=["admin", "user"])
    setup_admin.set_defaults(handler=_setup_admin)

    sync = commands.add_parser("sync-documents", help="Drop document records whose object is gone")
    sync.set_defaults(handler=_sync_documents)

    purge = commands.add_parser("purge-preapprovals", help="Delete expired preapprovals")
    purge.set_defaults(handler=_purge_preapprovals)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=get_settings().log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    db = SessionLocal()
    try:
        return args.handler(db, args)
    except AppError as exc:
        logger.error("maintenance_failed command=%s error=%s", args.command, exc.message)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
