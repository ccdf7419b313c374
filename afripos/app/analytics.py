from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from .jsonlog import json_log
from .models import Product


class CartAddRecorder:
    """
    Fire-and-forget `record_cart_add` calls.

    Work runs on a single background thread so a slow or unreachable sink
    never blocks the till; every failure is swallowed.
    """

    def __init__(self, sink, user_id: Optional[str] = None, inline: bool = False):
        self.sink = sink
        self.user_id = user_id
        self._executor = None if inline else ThreadPoolExecutor(max_workers=1, thread_name_prefix="afripos-analytics")

    def __call__(self, product: Product) -> None:
        if self.sink is None:
            return
        if self._executor is None:
            self._send(product.id)
            return
        try:
            self._executor.submit(self._send, product.id)
        except RuntimeError:
            # Executor already shut down.
            pass

    def _send(self, product_id: str) -> None:
        try:
            self.sink.record_cart_add(product_id, self.user_id)
        except Exception as ex:
            json_log("debug", "analytics.cart_add.error", product_id=product_id, error=str(ex))

    def shutdown(self, wait: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
