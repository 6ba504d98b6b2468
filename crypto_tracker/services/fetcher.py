"""Batch price lookups followed by history enrichment against CoinGecko.

Both phases fan out over a bounded pool of asyncio workers and wait for every
item before returning. A failed lookup never aborts its siblings: it is logged,
reported as a failed :class:`FetchStatus`, and left out of the quotes (price
phase) or left with an empty series (history phase).
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Sequence, TypeVar

import httpx

from ..clients.coingecko import fetch_coin, fetch_market_chart
from ..config import Settings, settings
from ..errors import UpstreamError
from ..schemas import AssetQuote, FetchStatus, days_for_range

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def parse_ids(raw: str, dedupe: bool = False) -> List[str]:
    """Split a comma separated id list and trim each entry.

    Empty entries are kept so they fail their own lookup. With ``dedupe``
    only the first occurrence of each id is kept.
    """
    ids = [part.strip() for part in raw.split(",")]
    if dedupe:
        ids = list(dict.fromkeys(ids))
    return ids


async def run_bounded(items: Sequence[T], worker: Callable[[T], Awaitable[R]], limit: int) -> List[R]:
    """Run ``worker`` over ``items`` with at most ``limit`` calls in flight.

    Results come back in input order. Each item owns its own result slot.
    """
    results: List[R] = [None] * len(items)  # type: ignore[list-item]
    if not items:
        return results

    queue: asyncio.Queue[int] = asyncio.Queue()
    for idx in range(len(items)):
        queue.put_nowait(idx)

    async def drain() -> None:
        while True:
            try:
                idx = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[idx] = await worker(items[idx])

    workers = [asyncio.create_task(drain()) for _ in range(min(max(limit, 1), len(items)))]
    try:
        await asyncio.gather(*workers)
    finally:
        for task in workers:
            task.cancel()
    return results


async def fetch_prices(
    client: httpx.AsyncClient,
    coin_ids: Sequence[str],
    cfg: Settings = settings,
) -> tuple[List[AssetQuote], List[FetchStatus]]:
    """One detail lookup per id; returns the quotes that resolved plus a status per id."""

    async def lookup(cg_id: str) -> tuple[AssetQuote | None, FetchStatus]:
        try:
            quote = await fetch_coin(client, cg_id, cfg.vs_currency, cfg.upstream_timeout)
        except UpstreamError as e:
            logger.warning("Error fetching price for %r: %s", cg_id, e)
            return None, FetchStatus(id=cg_id, stage="price", ok=False, error=str(e))
        logger.debug("Fetched data for %s: %s", cg_id, quote)
        return quote, FetchStatus(id=cg_id, stage="price", ok=True)

    outcomes = await run_bounded(coin_ids, lookup, cfg.max_concurrency)
    quotes = [quote for quote, _ in outcomes if quote is not None]
    statuses = [status for _, status in outcomes]
    return quotes, statuses


async def enrich_history(
    client: httpx.AsyncClient,
    quotes: Iterable[AssetQuote],
    time_range: str | None,
    cfg: Settings = settings,
) -> List[FetchStatus]:
    """Attach a price series to each quote, matched by coin id.

    Repeated ids share one lookup. Failed lookups leave ``historical_data`` empty.
    """
    quotes = list(quotes)
    days = days_for_range(time_range)
    coin_ids = list(dict.fromkeys(q.id for q in quotes))

    async def lookup(cg_id: str) -> tuple[str, list[tuple[int, float]], FetchStatus]:
        try:
            series = await fetch_market_chart(client, cg_id, cfg.vs_currency, days, cfg.upstream_timeout)
        except UpstreamError as e:
            logger.warning("Error fetching historical data for %r: %s", cg_id, e)
            return cg_id, [], FetchStatus(id=cg_id, stage="history", ok=False, error=str(e))
        return cg_id, series, FetchStatus(id=cg_id, stage="history", ok=True)

    outcomes = await run_bounded(coin_ids, lookup, cfg.max_concurrency)
    by_id = {cg_id: series for cg_id, series, _ in outcomes}
    for quote in quotes:
        quote.historical_data = list(by_id.get(quote.id, []))
    return [status for _, _, status in outcomes]
