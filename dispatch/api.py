import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Header, Request
from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import Response

from .client import WhatsAppClient
from .config import settings
from .errors import InvalidRateError
from .logging_setup import setup_logging
from .metrics import content_type, render_prometheus
from .rate_limit import RateLimiter
from .worker import create_client, run_campaign


class RateUpdate(BaseModel):
    messages_per_second: int


class ContactIn(BaseModel):
    phone: str
    name: str = ""
    custom_fields: Dict[str, object] = Field(default_factory=dict)


class CampaignRequest(BaseModel):
    """Same shape as the worker's campaign file."""
    model_config = ConfigDict(populate_by_name=True)

    campaign_id: str = Field(alias="campaignId", min_length=1)
    template_name: str = Field(alias="templateName", min_length=1)
    language: str = "pt_BR"
    template_variables: List[str] = Field(default_factory=list, alias="templateVariables")
    contacts: List[ContactIn] = Field(min_length=1)


def require_api_key(x_api_key: str = Header(default=None)):
    if settings.api_key and x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


def _limiter(request: Request) -> RateLimiter:
    return request.app.state.limiter


def _client(request: Request) -> WhatsAppClient:
    if request.app.state.client is None:
        if not settings.credentials_configured:
            raise HTTPException(status_code=503, detail="WhatsApp credentials not configured")
        request.app.state.client = create_client()
    return request.app.state.client


def _status(limiter: RateLimiter) -> dict:
    return {
        "rate": limiter.rate,
        "tokens_available": limiter.get_tokens_available(),
        "running": limiter.running,
    }


def _campaign_status(campaign_id: str, task: asyncio.Task) -> dict:
    if not task.done():
        return {"campaignId": campaign_id, "status": "running"}
    if task.cancelled() or task.exception() is not None:
        return {"campaignId": campaign_id, "status": "error"}
    summary = task.result()
    return {
        "campaignId": campaign_id,
        "status": "done",
        "sent": summary.sent,
        "failed": summary.failed,
        "skipped": summary.skipped,
    }


def create_app(limiter: RateLimiter | None = None, client: WhatsAppClient | None = None) -> FastAPI:
    """
    Campaigns dispatched through this app share `app.state.limiter`, so
    /limiter/rate and /limiter/reset act on sends that are in flight.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # stopping first turns every pending acquire() into a "skipped" result
        app.state.limiter.stop()
        await asyncio.gather(*app.state.campaigns.values(), return_exceptions=True)
        if app.state.client is not None:
            app.state.client.close()

    app = FastAPI(title="Campaign Dispatch", version="1.0", lifespan=lifespan)
    app.state.limiter = limiter or RateLimiter(settings.whatsapp_rate_limit)
    app.state.client = client
    app.state.campaigns = {}

    @app.get("/")
    def root():
        return {"name": "Campaign Dispatch", "docs": "/docs", "health": "/health"}

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/metrics")
    def metrics():
        return Response(render_prometheus(), media_type=content_type())

    @app.get("/limiter")
    async def limiter_status(limiter: RateLimiter = Depends(_limiter)):
        return _status(limiter)

    @app.put("/limiter/rate", dependencies=[Depends(require_api_key)])
    async def update_rate(body: RateUpdate, limiter: RateLimiter = Depends(_limiter)):
        try:
            limiter.update_rate(body.messages_per_second)
        except InvalidRateError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return _status(limiter)

    @app.post("/limiter/reset", dependencies=[Depends(require_api_key)])
    async def reset(limiter: RateLimiter = Depends(_limiter)):
        limiter.reset()
        return _status(limiter)

    @app.post("/campaigns/dispatch", status_code=202, dependencies=[Depends(require_api_key)])
    async def dispatch_campaign(body: CampaignRequest, request: Request,
                                limiter: RateLimiter = Depends(_limiter),
                                client: WhatsAppClient = Depends(_client)):
        campaigns = request.app.state.campaigns
        running = campaigns.get(body.campaign_id)
        if running is not None and not running.done():
            raise HTTPException(status_code=409, detail="Campaign is already being dispatched")
        if not limiter.running:
            raise HTTPException(status_code=503, detail="Rate limiter stopped")

        campaigns[body.campaign_id] = asyncio.create_task(
            run_campaign(body.model_dump(by_alias=True), client, limiter))
        return {"status": "queued", "campaignId": body.campaign_id, "count": len(body.contacts)}

    @app.get("/campaigns/{campaign_id}")
    async def campaign_status(campaign_id: str, request: Request):
        task = request.app.state.campaigns.get(campaign_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Unknown campaign")
        return _campaign_status(campaign_id, task)

    return app


def main():
    setup_logging(app="campaign-dispatch-api", level=settings.log_level, filename=settings.log_file)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
