"""
Market data service for fetching current quotes.
Uses yfinance with tenacity retries, a minimum interval between upstream
requests and a short-lived cache so repeated dashboard refreshes do not
hammer the data source.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

import pandas as pd
import yfinance as yf
from cachetools import TTLCache
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import get_settings
from services.common import Quote, is_finite_number, normalize_symbol

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Spaces out calls so that at least min_interval seconds separate
    the start of two consecutive upstream requests.
    """

    def __init__(self, min_interval: float):
        self.min_interval = max(0.0, min_interval)
        self._lock = threading.Lock()
        self._last_call = 0.0

    def wait(self) -> None:
        """Block until the next request may be sent."""
        with self._lock:
            now = time.monotonic()
            delay = self._last_call + self.min_interval - now
            if delay > 0:
                time.sleep(delay)
                now = time.monotonic()
            self._last_call = now


class MarketDataService:
    """
    Service for fetching current prices.
    Failed lookups are remembered for a shorter time than successful ones,
    and never raise to the caller.
    """

    def __init__(self,
                 cache_ttl: Optional[int] = None,
                 failure_ttl: Optional[int] = None,
                 min_interval: Optional[float] = None,
                 max_workers: Optional[int] = None):
        settings = get_settings()
        self.max_workers = max_workers or settings.quote_max_workers
        self._cache: TTLCache = TTLCache(
            maxsize=settings.quote_cache_size,
            ttl=cache_ttl if cache_ttl is not None else settings.quote_cache_ttl_seconds,
        )
        self._failures: TTLCache = TTLCache(
            maxsize=settings.quote_cache_size,
            ttl=failure_ttl if failure_ttl is not None else settings.quote_failure_ttl_seconds,
        )
        self._cache_lock = threading.RLock()
        self._limiter = RateLimiter(
            min_interval if min_interval is not None else settings.quote_min_interval_seconds
        )

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(Exception),
        reraise=True
    )
    def _fetch_ticker_info(yf_symbol: str) -> Dict:
        """Fetch ticker info with retry logic."""
        ticker = yf.Ticker(yf_symbol)
        return ticker.info

    @staticmethod
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(Exception),
        reraise=True
    )
    def _fetch_ticker_history(yf_symbol: str, period: str = "1d") -> pd.DataFrame:
        """Fetch ticker history with retry logic."""
        ticker = yf.Ticker(yf_symbol)
        return ticker.history(period=period)

    @staticmethod
    def _parse_market_time(value) -> Optional[datetime]:
        if not is_finite_number(value):
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    def _lookup(self, symbol: str) -> Quote:
        """Query the upstream source once; raises on transport errors."""
        self._limiter.wait()
        info = MarketDataService._fetch_ticker_info(symbol) or {}

        price = info.get('regularMarketPrice') or info.get('currentPrice')
        as_of = self._parse_market_time(info.get('regularMarketTime'))

        if not is_finite_number(price):
            self._limiter.wait()
            hist = MarketDataService._fetch_ticker_history(symbol, period="1d")
            closes = hist['Close'].dropna() if hist is not None and not hist.empty else None
            price = float(closes.iloc[-1]) if closes is not None and len(closes) else None
            if price is not None and as_of is None:
                as_of = pd.Timestamp(closes.index[-1]).to_pydatetime()

        return Quote(
            symbol=symbol,
            price=float(price) if is_finite_number(price) else None,
            as_of=as_of,
            currency=info.get('currency'),
            source="yahoo",
        )

    def get_quote(self, symbol: str) -> Optional[Quote]:
        """
        Fetch the current quote for a symbol, served from cache when fresh.

        Args:
            symbol: Instrument symbol in any case

        Returns:
            Quote with a price, or None if no price could be obtained
        """
        key = normalize_symbol(symbol)
        if not key:
            return None

        with self._cache_lock:
            cached = self._cache.get(key)
            if cached is not None:
                return replace(cached, cached=True)
            if key in self._failures:
                logger.debug(f"Skipping {key}: recent lookup failed")
                return None

        try:
            quote = self._lookup(key)
        except Exception as e:
            logger.error(f"Error fetching quote for {key}: {e}")
            quote = None

        with self._cache_lock:
            if quote is not None and quote.has_price:
                self._cache[key] = quote
                return quote
            self._failures[key] = True

        logger.warning(f"No price available for {key}")
        return None

    def get_quotes(self, symbols: Iterable[str]) -> Dict[str, Quote]:
        """
        Fetch quotes for several symbols in parallel.

        Returns:
            Mapping from normalised symbol to Quote. Symbols that could not
            be priced are absent.
        """
        unique = sorted({normalize_symbol(s) for s in symbols if normalize_symbol(s)})
        if not unique:
            return {}

        quotes: Dict[str, Quote] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_symbol = {executor.submit(self.get_quote, s): s for s in unique}
            for future in as_completed(future_to_symbol):
                symbol = future_to_symbol[future]
                try:
                    quote = future.result()
                except Exception as e:
                    logger.error(f"Quote lookup for {symbol} failed: {e}")
                    continue
                if quote is not None:
                    quotes[symbol] = quote

        logger.info(f"Fetched {len(quotes)}/{len(unique)} quotes")
        return quotes

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        """
        Units of to_currency per unit of from_currency.

        Uses the yfinance FX ticker format FROMTO=X (e.g. USDSGD=X) and
        shares the quote cache and rate limit.

        Returns:
            Exchange rate, 1.0 for the same currency, or None if unavailable
        """
        source = normalize_symbol(from_currency)
        target = normalize_symbol(to_currency)
        if not source or not target:
            return None
        if source == target:
            return 1.0

        quote = self.get_quote(f"{source}{target}=X")
        if quote is None or quote.price <= 0:
            logger.warning(f"Could not get exchange rate for {source}{target}=X")
            return None
        return quote.price

    def clear_cache(self) -> None:
        """Forget cached quotes and failures."""
        with self._cache_lock:
            self._cache.clear()
            self._failures.clear()
        logger.info("Market data cache cleared")


# Global service instance
_service: Optional[MarketDataService] = None


def get_market_data_service() -> MarketDataService:
    """Get or create the shared market data service."""
    global _service
    if _service is None:
        _service = MarketDataService()
    return _service
