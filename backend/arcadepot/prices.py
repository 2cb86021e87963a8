# prices.py
"""
USD price feed for the two native assets.

One CoinGecko request refreshes both prices; results are cached for `ttl_sec`
so the free API tier is not hammered. The cache belongs to the PriceOracle
instance, never to module state.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests

from .config import NETWORKS, Network
from .errors import PriceUnavailable

log = logging.getLogger(__name__)

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
COINGECKO_IDS: Dict[Network, str] = {Network.SOLANA: "solana", Network.BASE: "ethereum"}


@dataclass
class CachedPrice:
    price: float
    fetched_at: float


@dataclass
class PaymentAmount:
    network: Network
    price: float
    amount: float    # native coins needed for the entry fee


class PriceOracle:
    def __init__(
        self,
        ttl_sec: int = 300,
        timeout_sec: float = 8.0,
        url: str = COINGECKO_URL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_sec = ttl_sec
        self.timeout_sec = timeout_sec
        self.url = url
        self._clock = clock
        self._cache: Dict[Network, CachedPrice] = {}
        self._lock = threading.Lock()

    def _fetch(self) -> Dict[Network, float]:
        ids = ",".join(COINGECKO_IDS[n] for n in NETWORKS)
        r = requests.get(self.url, params={"ids": ids, "vs_currencies": "usd"}, timeout=self.timeout_sec)
        r.raise_for_status()
        data = r.json()
        out: Dict[Network, float] = {}
        for net in NETWORKS:
            entry = data.get(COINGECKO_IDS[net]) or {}
            usd = entry.get("usd")
            if usd is None or float(usd) <= 0:
                raise ValueError(f"no usd price for {COINGECKO_IDS[net]}")
            out[net] = float(usd)
        return out

    def price(self, network: Network) -> float:
        with self._lock:
            now = self._clock()
            cached = self._cache.get(network)
            if cached and now - cached.fetched_at < self.ttl_sec:
                return cached.price
            try:
                fresh = self._fetch()
            except (requests.RequestException, ValueError) as e:
                if cached:
                    log.warning("[prices] refresh failed, serving stale %s price: %s", network.value, e)
                    return cached.price
                log.warning("[prices] refresh failed: %s", e)
                raise PriceUnavailable("Price feed temporarily unavailable. Try again in a moment.") from e
            for net, usd in fresh.items():
                self._cache[net] = CachedPrice(price=usd, fetched_at=now)
            return fresh[network]

    def payment_amount(self, network: Network, fee_usd: float) -> PaymentAmount:
        usd = self.price(network)
        return PaymentAmount(network=network, price=usd, amount=fee_usd / usd)

    def cached(self, network: Network) -> Optional[float]:
        c = self._cache.get(network)
        return c.price if c else None
