"""
REST client for OKX historical market data.

Charts are seeded with recent candles over REST before the WebSocket stream
takes over; candles come back in the same canonical form the stream delivers.

Example Usage:
    ```python
    from okxfeed.data import OKXHistoryClient

    async with OKXHistoryClient() as client:
        candles = await client.get_historical_candles("BTC", "1h", limit=100)
        tickers = await client.get_ticker("BTC-USDT")
        spot = await client.get_instruments()
    ```
"""

from dataclasses import asdict, dataclass
from typing import Any

import httpx

from okxfeed.config import OKXSettings, get_settings
from okxfeed.config.constants import (
    DEFAULT_INSTRUMENT_TYPE,
    REST_CANDLES_PATH,
    REST_INSTRUMENTS_PATH,
    REST_MAX_CANDLES,
    REST_SUCCESS_CODE,
    REST_TICKER_PATH,
    REST_TICKERS_PATH,
)
from okxfeed.stream.channels import normalize_instrument_id, normalize_interval
from okxfeed.stream.errors import ParseError
from okxfeed.stream.models import Candle, ChannelFamily, TickerSnapshot
from okxfeed.stream.normalizer import normalize_candle_row, ticker_from_record
from okxfeed.utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Instrument:
    """Tradable instrument as listed by ``/api/v5/public/instruments``."""

    instrument_id: str
    base_currency: str | None = None
    quote_currency: str | None = None
    state: str | None = None

    @classmethod
    def from_record(cls, record: Any) -> "Instrument":
        if not isinstance(record, dict) or not record.get("instId"):
            raise ParseError("instrument record without instId", record)
        return cls(
            instrument_id=record["instId"],
            base_currency=record.get("baseCcy") or None,
            quote_currency=record.get("quoteCcy") or None,
            state=record.get("state") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class OKXAPIError(Exception):
    """OKX REST request failed at the HTTP level or returned a non-zero code."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.payload = payload


class OKXHistoryClient:
    """Client for OKX public market-data REST endpoints."""

    def __init__(
        self,
        settings: OKXSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the REST client.

        Args:
            settings: Endpoint settings (defaults to ``get_settings().okx``)
            transport: Custom httpx transport, e.g. ``httpx.MockTransport`` in tests
        """
        self.settings = settings or get_settings().okx
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.rest_base_url,
                timeout=self.settings.rest_timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client and cleanup resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "OKXHistoryClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def _get(self, path: str, params: dict[str, str]) -> list[Any]:
        """GET ``path`` and return the ``data`` list of a successful response.

        Raises:
            OKXAPIError: On transport errors, HTTP errors or a non-zero code
        """
        client = await self._get_client()
        try:
            response = await client.get(path, params=params)
        except httpx.HTTPError as e:
            logger.error("okx_rest_request_failed", path=path, error=str(e))
            raise OKXAPIError(f"Network error calling OKX API: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            message = (body or {}).get("msg") if isinstance(body, dict) else None
            logger.error("okx_rest_http_error", path=path, status=response.status_code, msg=message)
            raise OKXAPIError(
                message or f"OKX API error: {response.status_code}",
                status=response.status_code,
                payload=body,
            )

        if not isinstance(body, dict):
            raise OKXAPIError("OKX API returned a non-object body", status=response.status_code)

        code = str(body.get("code"))
        if code != REST_SUCCESS_CODE:
            logger.error("okx_rest_api_error", path=path, code=code, msg=body.get("msg"))
            raise OKXAPIError(
                body.get("msg") or f"OKX API returned code {code}",
                code=code,
                status=response.status_code,
                payload=body,
            )

        data = body.get("data")
        return data if isinstance(data, list) else []

    async def get_historical_candles(
        self,
        instrument_id: str,
        interval: str,
        limit: int = REST_MAX_CANDLES,
        before: int | None = None,
        after: int | None = None,
    ) -> list[Candle]:
        """Fetch candles for ``instrument_id``, oldest first.

        Args:
            instrument_id: Instrument such as ``BTC-USDT``; bare ``BTC`` gets ``-USDT``
            interval: OKX bar (``1H``) or dashboard interval (``1h``, ``1min``...)
            limit: Number of candles, capped at 100
            before: Only candles newer than this millisecond timestamp
            after: Only candles older than this millisecond timestamp

        Raises:
            OKXAPIError: If the request fails or a row is malformed
        """
        params = {
            "instId": normalize_instrument_id(instrument_id, ChannelFamily.CANDLE),
            "bar": normalize_interval(interval),
            "limit": str(max(1, min(limit, REST_MAX_CANDLES))),
        }
        if after:
            params["after"] = str(after)
        if before:
            params["before"] = str(before)

        logger.debug("fetching_historical_candles", **params)
        rows = await self._get(REST_CANDLES_PATH, params)

        try:
            candles = [normalize_candle_row(row) for row in rows]
        except ParseError as e:
            raise OKXAPIError(f"Malformed candle row: {e}", payload=e.raw) from e

        # OKX returns newest first
        candles.reverse()
        logger.info(
            "historical_candles_fetched",
            inst_id=params["instId"],
            bar=params["bar"],
            count=len(candles),
        )
        return candles

    async def get_ticker(
        self,
        instrument_id: str | None = None,
        instrument_type: str = DEFAULT_INSTRUMENT_TYPE,
    ) -> list[TickerSnapshot]:
        """Fetch the current ticker of ``instrument_id``.

        Without an instrument, every ticker of ``instrument_type`` is returned.

        Raises:
            OKXAPIError: If the request fails or a record is malformed
        """
        if instrument_id:
            inst_id = normalize_instrument_id(instrument_id, ChannelFamily.TICKER)
            records = await self._get(REST_TICKER_PATH, {"instId": inst_id})
        else:
            inst_id = None
            records = await self._get(REST_TICKERS_PATH, {"instType": instrument_type.upper()})

        try:
            return [ticker_from_record(record, inst_id) for record in records]
        except ParseError as e:
            raise OKXAPIError(f"Malformed ticker record: {e}", payload=e.raw) from e

    async def get_instruments(
        self, instrument_type: str = DEFAULT_INSTRUMENT_TYPE
    ) -> list[Instrument]:
        """List the instruments of ``instrument_type`` (``SPOT`` by default).

        Raises:
            OKXAPIError: If the request fails or a record is malformed
        """
        inst_type = instrument_type.upper()
        records = await self._get(REST_INSTRUMENTS_PATH, {"instType": inst_type})
        try:
            instruments = [Instrument.from_record(record) for record in records]
        except ParseError as e:
            raise OKXAPIError(f"Malformed instrument record: {e}", payload=e.raw) from e

        logger.info("instruments_fetched", inst_type=inst_type, count=len(instruments))
        return instruments
