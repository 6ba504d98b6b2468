"""Failure kinds raised by the CoinGecko client layer."""


class UpstreamError(Exception):
    """A single-coin lookup against CoinGecko failed."""

    def __init__(self, coin_id: str, message: str):
        super().__init__(message)
        self.coin_id = coin_id


class UpstreamTransportError(UpstreamError):
    """Network failure, timeout or unexpected HTTP status."""


class UpstreamParseError(UpstreamError):
    """Body was not JSON or did not have the expected shape."""


class CoinNotFoundError(UpstreamError):
    """Unknown coin id, or no price for the configured quote currency."""
