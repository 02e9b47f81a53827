import argparse
import os
import time
import uuid
from datetime import datetime, timedelta, timezone

from loguru import logger

from publisher_sdk import PublisherClient, PublisherClientError, build_conversion, build_impression


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send a synthetic pause impression and QR scan")
    parser.add_argument("--base-url", default=os.environ.get("PAUSELINK_URL", "http://localhost:8000"))
    parser.add_argument("--publisher-id", required=True)
    parser.add_argument("--api-key", default=os.environ.get("PAUSELINK_API_KEY"))
    parser.add_argument("--webhook-secret", default=os.environ.get("PAUSELINK_WEBHOOK_SECRET"))
    parser.add_argument("--campaign-id", required=True)
    parser.add_argument("--program", default="Synthetic Program")
    parser.add_argument("--count", type=int, default=1, help="Number of impressions to send")
    parser.add_argument(
        "--scan-after",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Also send a conversion this many seconds after each QR display",
    )
    parser.add_argument(
        "--result",
        default="success",
        help="Conversion result reported for each scan (success|failed|abandoned)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    sent = failed = 0

    with PublisherClient(
        args.base_url,
        publisher_id=args.publisher_id,
        api_key=args.api_key,
        webhook_secret=args.webhook_secret,
    ) as client:
        for _ in range(args.count):
            opportunity_id = f"opp_{uuid.uuid4().hex[:16]}"
            shown_at = datetime.now(timezone.utc)
            try:
                client.send_event(
                    build_impression(
                        publisher_id=args.publisher_id,
                        opportunity_id=opportunity_id,
                        campaign_id=args.campaign_id,
                        content_title=args.program,
                        event_time=shown_at,
                        qr_appeared_at=shown_at,
                    )
                )
                sent += 1
                if args.scan_after is not None:
                    # Synthetic scan time; the script never waits for it.
                    scanned_at = shown_at + timedelta(seconds=args.scan_after)
                    response = client.send_event(
                        build_conversion(
                            publisher_id=args.publisher_id,
                            opportunity_id=opportunity_id,
                            result=args.result,
                            event_time=scanned_at,
                        )
                    )
                    sent += 1
                    logger.info(
                        "Opportunity {}: ASV {} billing={}",
                        opportunity_id,
                        response.get("asv"),
                        response.get("billing_status"),
                    )
            except PublisherClientError as exc:
                failed += 1
                logger.error("Rejected: {}", exc)
            time.sleep(0.05)

    logger.info("Sent {} events ({} rejected)", sent, failed)


if __name__ == "__main__":
    main()
