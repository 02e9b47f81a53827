import argparse
import sys
from decimal import Decimal, InvalidOperation

from loguru import logger

from pauselink.core.config import get_settings
from pauselink.core.logging import configure_logging
from pauselink.db import SessionLocal, init_db, session_scope
from pauselink.models import PlatformType, PublisherStatus
from pauselink.repositories import CampaignRepository, CredentialRepository, LedgerRepository
from pauselink.services import BillingLedger, IdempotencyGuard


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid decimal amount: {value!r}") from exc


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Administer publishers, campaigns and wallets")
    groups = parser.add_subparsers(dest="group", required=True)

    publisher = groups.add_parser("publisher", help="Manage publisher credentials")
    publisher_cmds = publisher.add_subparsers(dest="command", required=True)

    create = publisher_cmds.add_parser("create", help="Register a publisher and issue credentials")
    create.add_argument("name", help="Publisher display name")
    create.add_argument("--publisher-id", default=None, help="Explicit id (default: pub_<slug>)")
    create.add_argument(
        "--platform",
        default=PlatformType.CTV.value,
        choices=[item.value for item in PlatformType],
    )
    create.add_argument("--contact-name", default=None)
    create.add_argument("--contact-email", default=None)
    create.add_argument("--notes", default=None)

    listing = publisher_cmds.add_parser("list", help="List publishers")
    listing.add_argument("--status", default=None, choices=[item.value for item in PublisherStatus])

    rotate = publisher_cmds.add_parser("rotate", help="Issue a new API key")
    rotate.add_argument("publisher_id")
    rotate.add_argument("--secret", action="store_true", help="Also rotate the webhook secret")

    status = publisher_cmds.add_parser("status", help="Activate, suspend or revoke a publisher")
    status.add_argument("publisher_id")
    status.add_argument("status", choices=[item.value for item in PublisherStatus])

    campaign = groups.add_parser("campaign", help="Manage campaigns")
    campaign_cmds = campaign.add_subparsers(dest="command", required=True)
    campaign_create = campaign_cmds.add_parser("create", help="Register a QR campaign")
    campaign_create.add_argument("campaign_id")
    campaign_create.add_argument("--advertiser", required=True, help="Advertiser account id")
    campaign_create.add_argument("--destination", required=True, help="QR destination URL")
    campaign_create.add_argument("--fee", type=_decimal, default=None, help="Conversion fee")
    campaign_create.add_argument("--publisher-share", type=_decimal, default=None)
    campaign_create.add_argument("--currency", default=None)
    campaign_create.add_argument("--publisher-id", default=None)
    campaign_create.add_argument("--program", default=None)
    campaign_create.add_argument("--creative-id", default=None)
    campaign_list = campaign_cmds.add_parser("list", help="List an advertiser's campaigns")
    campaign_list.add_argument("advertiser_id")

    wallet = groups.add_parser("wallet", help="Fund and audit advertiser wallets")
    wallet_cmds = wallet.add_subparsers(dest="command", required=True)
    deposit = wallet_cmds.add_parser("deposit", help="Credit an advertiser wallet")
    deposit.add_argument("advertiser_id")
    deposit.add_argument("amount", type=_decimal)
    deposit.add_argument("--currency", default=None)
    deposit.add_argument("--description", default=None)
    deposit.add_argument("--reference", default=None, help="External payment reference")
    wallet_cmds.add_parser("list", help="Show every wallet balance")
    wallet_cmds.add_parser("reconcile", help="Check every balance against its ledger")

    idempotency = groups.add_parser("idempotency", help="Maintain the idempotency cache")
    idempotency_cmds = idempotency.add_subparsers(dest="command", required=True)
    idempotency_cmds.add_parser("purge", help="Delete expired entries")

    return parser.parse_args(argv)


def _publisher(args: argparse.Namespace) -> int:
    with session_scope() as session:
        repository = CredentialRepository(session)
        if args.command == "create":
            issued = repository.create(
                publisher_name=args.name,
                publisher_id=args.publisher_id,
                contact_name=args.contact_name,
                contact_email=args.contact_email,
                platform_type=args.platform,
                notes=args.notes,
            )
            print(f"publisher_id:   {issued.publisher_id}")
            print(f"api_key:        {issued.api_key}")
            print(f"webhook_secret: {issued.webhook_secret}")
            print("Store these values now; the API key cannot be shown again.")
            return 0

        if args.command == "list":
            for credential in repository.list(status=args.status):
                print(
                    f"{credential.publisher_id}\t{credential.publisher_name}\t"
                    f"{credential.status}\t{credential.api_key_prefix}...\t"
                    f"requests={credential.requests_count}"
                )
            return 0

        credential = repository.get(args.publisher_id)
        if credential is None:
            logger.error("Unknown publisher {}", args.publisher_id)
            return 1
        if args.command == "rotate":
            issued = repository.rotate(credential, rotate_secret=args.secret)
            print(f"api_key:        {issued.api_key}")
            if args.secret:
                print(f"webhook_secret: {issued.webhook_secret}")
            return 0

        repository.set_status(credential, args.status)
        logger.info("Publisher {} is now {}", credential.publisher_id, credential.status)
        return 0


def _campaign(args: argparse.Namespace) -> int:
    settings = get_settings()
    with session_scope() as session:
        repository = CampaignRepository(session)
        if args.command == "list":
            for campaign in repository.list_for_advertiser(args.advertiser_id):
                print(
                    f"{campaign.campaign_id}\t{campaign.conversion_fee or '-'}\t"
                    f"{campaign.currency}\t{'active' if campaign.active else 'inactive'}\t"
                    f"{campaign.destination_url}"
                )
            return 0

        try:
            campaign = repository.create(
                campaign_id=args.campaign_id,
                advertiser_id=args.advertiser,
                destination_url=args.destination,
                conversion_fee=args.fee,
                publisher_share=args.publisher_share,
                currency=args.currency or settings.default_currency,
                publisher_id=args.publisher_id,
                program=args.program,
                creative_id=args.creative_id,
            )
        except ValueError as exc:
            logger.error("Cannot create campaign: {}", exc)
            return 1
        logger.info("Created campaign {} for advertiser {}", campaign.campaign_id, campaign.advertiser_id)
    return 0


def _wallet(args: argparse.Namespace) -> int:
    settings = get_settings()
    with session_scope() as session:
        ledger = BillingLedger(
            session,
            default_fee=settings.default_conversion_fee,
            default_ratio=settings.default_publisher_share_ratio,
            default_currency=settings.default_currency,
        )
        if args.command == "deposit":
            try:
                ledger.deposit(
                    args.advertiser_id,
                    args.amount,
                    currency=args.currency,
                    description=args.description,
                    reference_id=args.reference,
                )
            except ValueError as exc:
                logger.error("Deposit rejected: {}", exc)
                return 1
            return 0

        if args.command == "list":
            for wallet in LedgerRepository(session).list_wallets():
                print(f"{wallet.wallet_id}\t{wallet.advertiser_id}\t{wallet.currency}\t{wallet.balance}")
            return 0

        results = ledger.reconcile()
        for result in results:
            state = "ok" if result.balanced else "MISMATCH"
            print(
                f"{result.wallet_id}\t{result.advertiser_id}\t{result.currency}\t"
                f"balance={result.balance}\tledger={result.ledger_total}\t"
                f"lines={result.line_count}\t{state}"
            )
        mismatched = [result for result in results if not result.balanced]
        if mismatched:
            logger.error("{} of {} wallets failed reconciliation", len(mismatched), len(results))
            return 2
        logger.info("All {} wallets reconcile with their ledgers", len(results))
        return 0


def _idempotency(args: argparse.Namespace) -> int:
    settings = get_settings()
    guard = IdempotencyGuard(
        SessionLocal,
        ttl_hours=settings.idempotency_ttl_hours,
        lease_seconds=settings.idempotency_lease_seconds,
    )
    removed = guard.purge_expired()
    print(f"removed {removed} expired entries")
    return 0


HANDLERS = {
    "publisher": _publisher,
    "campaign": _campaign,
    "wallet": _wallet,
    "idempotency": _idempotency,
}


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging()
    init_db()
    return HANDLERS[args.group](args)


if __name__ == "__main__":
    sys.exit(main())
