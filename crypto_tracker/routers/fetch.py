import asyncio
import logging
from typing import Any, Awaitable, Sequence
import httpx
from fastapi import APIRouter, Depends, Form, Request, Response
from fastapi.responses import PlainTextResponse

from ..config import settings
from ..schemas import FetchResponse, FetchStatus, TimeRange
from ..services.fetcher import enrich_history, fetch_prices, parse_ids

logger = logging.getLogger(__name__)

router = APIRouter(tags=["prices"])

# nginx's "client closed request"
CLIENT_CLOSED_REQUEST = 499

class ClientDisconnected(Exception):
    """The caller went away before the fetch finished."""

def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client

async def _wait_for_disconnect(request: Request, poll_interval: float) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(poll_interval)

async def run_while_connected(request: Request, work: Awaitable[Any], poll_interval: float) -> Any:
    """
    Await `work`, cancelling it (and every upstream call under it) if the client disconnects.
    Raises ClientDisconnected in that case.
    """
    work_task = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request, poll_interval))
    try:
        done, _ = await asyncio.wait({work_task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work_task, watcher):
            if not task.done():
                task.cancel()
        await asyncio.gather(work_task, watcher, return_exceptions=True)
    if work_task in done:
        return work_task.result()
    raise ClientDisconnected()

async def _collect(client: httpx.AsyncClient, coin_ids: Sequence[str], time_range: str) -> Response | FetchResponse:
    try:
        quotes, statuses = await fetch_prices(client, coin_ids, settings)
    except Exception:
        logger.exception("Error fetching crypto prices")
        return PlainTextResponse("Error fetching crypto prices", status_code=500)

    try:
        statuses += await enrich_history(client, quotes, time_range, settings)
    except Exception:
        # quotes are still worth returning without their series
        logger.exception("Error fetching historical data")
        for quote in quotes:
            quote.historical_data = []
        statuses += [
            FetchStatus(id=cg_id, stage="history", ok=False, error="Historical data unavailable")
            for cg_id in dict.fromkeys(q.id for q in quotes)
        ]

    logger.info(
        "Fetched %d/%d coins (timeRange=%s)", len(quotes), len(coin_ids), time_range
    )
    return FetchResponse(crypto_data=quotes, statuses=statuses)

@router.post("/fetch", response_model=FetchResponse)
async def fetch(
    request: Request,
    cryptoIDs: str = Form(..., description="Comma-separated CoinGecko ids, e.g. bitcoin,ethereum"),
    timeRange: str = Form(TimeRange.H24.value, description="24h, 7d, 30d or 1y"),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Current price/market stats plus a price series for each requested coin.
    Coins that cannot be resolved are left out of cryptoData and reported in statuses.
    """
    coin_ids = parse_ids(cryptoIDs, dedupe=settings.dedupe_ids)

    try:
        return await run_while_connected(
            request, _collect(client, coin_ids, timeRange), settings.disconnect_poll_interval
        )
    except ClientDisconnected:
        logger.info("Client disconnected, cancelled fetch of %d coins", len(coin_ids))
        return Response(status_code=CLIENT_CLOSED_REQUEST)
