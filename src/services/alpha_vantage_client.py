from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from pydantic import ValidationError

from domain.exchange_rate import ExchangeRateObservation

# API docs: https://www.alphavantage.co/documentation/#currency-exchange
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"

_RATE_SECTION = "Realtime Currency Exchange Rate"


class VendorRequestError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class AlphaVantageClient:
    """Alpha Vantage client covering the realtime currency exchange rate endpoint."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://www.alphavantage.co",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            msg = "api_key must be provided"
            raise ValueError(msg)

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> ExchangeRateObservation:
        if not from_currency or not to_currency:
            msg = "from_currency and to_currency must be provided"
            raise ValueError(msg)

        params = {
            "function": "CURRENCY_EXCHANGE_RATE",
            "from_currency": from_currency,
            "to_currency": to_currency,
        }
        payload = self._request("GET", "/query", params=params)
        return self._parse_exchange_rate(payload)

    def _request(self, method: str, path: str, *, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                params={**params, "apikey": self.api_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            resp = exc.response
            status_code = getattr(resp, "status_code", None)
            error_payload: Any | None = None
            if resp is not None:
                try:
                    error_payload = resp.json()
                except ValueError:
                    error_payload = resp.text
            raise VendorRequestError(
                "Alpha Vantage request failed", status_code=status_code, payload=error_payload
            ) from exc
        except requests.RequestException as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            raise VendorRequestError("Alpha Vantage request failed", status_code=status_code) from exc

        try:
            payload_raw = response.json()
        except ValueError as exc:
            raise VendorRequestError("Alpha Vantage returned invalid JSON", payload=response.text) from exc

        if not isinstance(payload_raw, dict):
            raise VendorRequestError("Alpha Vantage returned unexpected payload type", payload=payload_raw)

        # Errors and throttling notices come back with HTTP 200.
        for field in ("Error Message", "Note", "Information"):
            if payload_raw.get(field):
                raise VendorRequestError(
                    f"Alpha Vantage error: {payload_raw[field]}", status_code=response.status_code, payload=payload_raw
                )

        return payload_raw

    def _parse_exchange_rate(self, payload: dict[str, Any]) -> ExchangeRateObservation:
        data = payload.get(_RATE_SECTION)
        if not isinstance(data, dict):
            raise VendorRequestError("Alpha Vantage payload missing exchange rate data", payload=payload)

        from_code = data.get("1. From_Currency Code")
        to_code = data.get("3. To_Currency Code")
        rate_raw = data.get("5. Exchange Rate")
        refreshed_raw = data.get("6. Last Refreshed")
        time_zone_raw = data.get("7. Time Zone")
        if None in (from_code, to_code, rate_raw, refreshed_raw, time_zone_raw):
            raise VendorRequestError("Alpha Vantage exchange rate entry missing required fields", payload=data)

        try:
            rate = float(rate_raw)
        except (TypeError, ValueError) as exc:
            raise VendorRequestError("Alpha Vantage exchange rate is not numeric", payload=data) from exc

        timestamp = self._parse_date(str(refreshed_raw), str(time_zone_raw), payload=data)
        try:
            return ExchangeRateObservation(
                from_currency=str(from_code),
                to_currency=str(to_code),
                rate=rate,
                timestamp=timestamp,
            )
        except ValidationError as exc:
            raise VendorRequestError("Alpha Vantage exchange rate entry is invalid", payload=data) from exc

    @staticmethod
    def _parse_date(value: str, time_zone: str, *, payload: Any) -> datetime:
        try:
            tz = timezone.utc if time_zone.upper() == "UTC" else ZoneInfo(time_zone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise VendorRequestError(f"Alpha Vantage returned unknown time zone {time_zone!r}", payload=payload) from exc

        fmt = DATETIME_FORMAT if ":" in value else DATE_FORMAT
        try:
            naive = datetime.strptime(value, fmt)
        except ValueError as exc:
            raise VendorRequestError(f"Alpha Vantage returned unparseable date {value!r}", payload=payload) from exc
        return naive.replace(tzinfo=tz)


__all__ = ["AlphaVantageClient", "VendorRequestError"]
