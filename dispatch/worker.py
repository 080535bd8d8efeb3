from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .client import WhatsAppClient
from .config import settings
from .dispatcher import CampaignDispatcher, DispatchSummary
from .events import Subject
from .logging_setup import setup_logging
from .metrics import start_worker_metrics_server
from .observers import LogReporter, MetricsReporter
from .rate_limit import RateLimiter
from .transform import Contact, build_messages


def load_campaign(path: str) -> dict:
    """
    Campaign file, same shape as the dispatch workflow payload:
      {"campaignId": "...", "templateName": "...", "language": "pt_BR",
       "templateVariables": ["{{name}}", "..."],
       "contacts": [{"phone": "...", "name": "...", "custom_fields": {...}}]}
    """
    with open(path, "r", encoding="utf-8") as f:
        body = json.load(f)
    if not isinstance(body, dict):
        raise ValueError("Campaign file must contain a JSON object")
    for key in ("campaignId", "templateName", "contacts"):
        if not body.get(key):
            raise ValueError(f"Campaign file is missing '{key}'")
    return body


def create_client() -> WhatsAppClient:
    return WhatsAppClient(
        settings.phone_number_id, settings.access_token,
        api_version=settings.meta_api_version,
        base_url=settings.graph_base_url,
        timeout=settings.api_timeout,
    )


async def run_campaign(body: dict, client: WhatsAppClient, limiter: RateLimiter) -> DispatchSummary:
    campaign_id = str(body["campaignId"])
    language = body.get("language") or "pt_BR"
    contacts = [Contact.from_dict(c) for c in body["contacts"]]
    messages, rejected = build_messages(contacts, body.get("templateVariables") or [])
    if rejected:
        logging.warning("[worker] Campaign %s: %d contacts rejected (invalid or duplicate phone)",
                        campaign_id, len(rejected))

    subject = Subject()
    subject.attach(LogReporter())
    subject.attach(MetricsReporter())

    def send(msg, template_name):
        return client.send_template(msg.phone, template_name, language=language, variables=msg.variables)

    dispatcher = CampaignDispatcher(
        limiter, send,
        concurrency=settings.max_workers,
        pair_rate_limit_wait=settings.pair_rate_limit_wait,
        max_retries=settings.api_max_retries,
        backoff_base=settings.api_backoff_base,
        backoff_cap=settings.api_backoff_cap,
        subject=subject,
    )
    return await dispatcher.dispatch(campaign_id, body["templateName"], messages)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Send a WhatsApp template campaign")
    parser.add_argument("campaign_file")
    parser.add_argument("--no-metrics", action="store_true", help="do not start the metrics server")
    args = parser.parse_args(argv)

    setup_logging(app="campaign-dispatch", level=settings.log_level, filename=settings.log_file)

    if not settings.credentials_configured:
        logging.error("[worker] WHATSAPP_PHONE_NUMBER_ID / WHATSAPP_ACCESS_TOKEN not configured")
        return 2

    try:
        body = load_campaign(args.campaign_file)
    except (OSError, ValueError) as e:
        logging.error("[worker] Cannot load campaign file %s: %s", args.campaign_file, e)
        return 2

    if not args.no_metrics:
        start_worker_metrics_server(settings.metrics_port)
        logging.info("[worker] Prometheus metrics on :%s", settings.metrics_port)

    client = create_client()
    limiter = RateLimiter(settings.whatsapp_rate_limit)
    try:
        summary = asyncio.run(run_campaign(body, client, limiter))
    finally:
        limiter.stop()
        client.close()

    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
