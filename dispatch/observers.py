import logging

from .events import DispatchEvent, Observer
from .metrics import MESSAGES_TOTAL
from .utils import mask_phone


class LogReporter(Observer):
    def update(self, event: DispatchEvent) -> None:
        level = logging.INFO if event.status == "sent" else logging.WARNING
        logging.log(
            level,
            "[LogReporter] campaign=%s to=%s status=%s id=%s err=%s",
            event.campaign_id, mask_phone(event.phone), event.status, event.message_id, event.error,
        )


class MetricsReporter(Observer):
    def update(self, event: DispatchEvent) -> None:
        MESSAGES_TOTAL.labels(status=event.status).inc()
