import asyncio
import math
import logging
import httpx
from typing import Any, Dict, List
from urllib.parse import quote
from pydantic import ValidationError
from ..config import Settings, settings
from ..errors import CoinNotFoundError, UpstreamParseError, UpstreamTransportError
from ..schemas import AssetQuote

logger = logging.getLogger(__name__)

UA = {"User-Agent": "crypto-tracker/1.0"}

# Drop the heavy optional sections of /coins/{id}
DETAIL_PARAMS = {
    "localization": "false",
    "tickers": "false",
    "community_data": "false",
    "developer_data": "false",
    "sparkline": "false",
}

def _headers(cfg: Settings) -> Dict[str, str]:
    headers = dict(UA)
    if cfg.coingecko_api_key:
        # CoinGecko v3 Pro header (if you have a key)
        headers["x-cg-pro-api-key"] = cfg.coingecko_api_key
    return headers

def build_client(cfg: Settings = settings, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Shared async client with explicit pool limits and timeouts."""
    return httpx.AsyncClient(
        base_url=cfg.coingecko_base_url,
        headers=_headers(cfg),
        timeout=httpx.Timeout(cfg.upstream_timeout),
        limits=httpx.Limits(
            max_connections=cfg.max_connections,
            max_keepalive_connections=cfg.max_keepalive_connections,
        ),
        transport=transport,
    )

async def _get_json(client: httpx.AsyncClient, cg_id: str, path: str, params: Dict[str, Any], timeout: float) -> Any:
    try:
        r = await asyncio.wait_for(client.get(path, params=params), timeout)
    except asyncio.TimeoutError:
        raise UpstreamTransportError(cg_id, f"Timed out after {timeout}s fetching {path}")
    except httpx.HTTPError as e:
        raise UpstreamTransportError(cg_id, f"Request to {path} failed: {e}") from e

    if r.status_code == 404:
        raise CoinNotFoundError(cg_id, f"Coin id not found: {cg_id}")
    if r.status_code in (401, 403):
        raise UpstreamTransportError(cg_id, f"Unauthorized for id={cg_id}. Check id/key.")
    if r.status_code == 429:
        raise UpstreamTransportError(cg_id, "Rate limited by CoinGecko")
    if r.status_code // 100 != 2:
        raise UpstreamTransportError(cg_id, f"Unexpected status {r.status_code} from {path}")

    try:
        return r.json()
    except ValueError as e:
        raise UpstreamParseError(cg_id, f"Invalid JSON from {path}: {e}") from e

def _number(value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite value {value!r}")
    return number

def _in_currency(block: Any, vs: str) -> float | None:
    if not isinstance(block, dict):
        return None
    value = block.get(vs)
    return None if value is None else _number(value)

def _coin_path(cg_id: str) -> str:
    # one escaped path segment, so '#', '?' or '/' in an id cannot change the URL
    return f"/coins/{quote(cg_id, safe='')}"

async def fetch_coin(client: httpx.AsyncClient, cg_id: str, vs_currency: str, timeout: float) -> AssetQuote:
    """
    Current price and market stats for one coin (by CoinGecko id).
    Raises an UpstreamError subclass on any failure.
    """
    data = await _get_json(client, cg_id, _coin_path(cg_id), DETAIL_PARAMS, timeout)
    vs = vs_currency.lower()
    if not isinstance(data, dict) or not data.get("id"):
        raise UpstreamParseError(cg_id, "Coin payload has no id")

    market = data.get("market_data")
    if not isinstance(market, dict):
        raise CoinNotFoundError(cg_id, f"No market data for {cg_id}")
    try:
        price = _in_currency(market.get("current_price"), vs)
        market_cap = _in_currency(market.get("market_cap"), vs)
        volume = _in_currency(market.get("total_volume"), vs)
    except (TypeError, ValueError, OverflowError) as e:
        raise UpstreamParseError(cg_id, f"Bad market data for {cg_id}: {e}") from e
    if price is None:
        raise CoinNotFoundError(cg_id, f"No {vs} price found for {cg_id}")

    try:
        return AssetQuote(
            id=data["id"],
            symbol=data.get("symbol") or "",
            name=data.get("name") or "",
            current_price=price,
            market_cap=market_cap,
            total_volume=volume,
        )
    except ValidationError as e:
        raise UpstreamParseError(cg_id, f"Bad coin payload for {cg_id}: {e.error_count()} invalid field(s)") from e

async def fetch_market_chart(client: httpx.AsyncClient, cg_id: str, vs_currency: str, days: int, timeout: float) -> List[tuple[int, float]]:
    """
    Price history for one coin over the last `days` days.
    Returns [(timestamp_ms, price)] sorted by timestamp.
    """
    params = {"vs_currency": vs_currency.lower(), "days": days}
    data = await _get_json(client, cg_id, f"{_coin_path(cg_id)}/market_chart", params, timeout)
    if not isinstance(data, dict) or not isinstance(data.get("prices"), list):
        raise UpstreamParseError(cg_id, "Market chart payload has no prices")
    points = []
    try:
        for ts_ms, price in data["prices"]:
            points.append((int(_number(ts_ms)), _number(price)))
    except (TypeError, ValueError, OverflowError) as e:
        raise UpstreamParseError(cg_id, f"Bad price point in market chart: {e}") from e
    points.sort(key=lambda x: x[0])
    return points
