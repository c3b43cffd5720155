# clinic_booking/services/payments.py
from __future__ import annotations
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional, Protocol

from ..config import settings

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="payments")


class PaymentProcessor(Protocol):
    def charge(self, method: str, amount: float) -> bool: ...


class SimulatedPaymentProcessor:
    """Pasarela simulada: tarda `delay` segundos y falla con probabilidad `failure_rate`."""

    def __init__(self, delay: Optional[float] = None, failure_rate: Optional[float] = None,
                 rng: Optional[random.Random] = None):
        self.delay = settings.PAYMENT_DELAY_SECONDS if delay is None else delay
        self.failure_rate = settings.PAYMENT_FAILURE_RATE if failure_rate is None else failure_rate
        self._rng = rng or random.Random()

    def charge(self, method: str, amount: float) -> bool:
        if self.delay:
            time.sleep(self.delay)
        ok = self._rng.random() >= self.failure_rate
        logger.info("Pago simulado method=%s amount=%.2f -> %s", method, amount, "OK" if ok else "RECHAZADO")
        return ok


def charge_with_timeout(processor: PaymentProcessor, method: str, amount: float,
                        timeout: Optional[float] = None) -> bool:
    """
    Cobra con tiempo máximo. Un timeout o una excepción del procesador cuentan
    como pago fallido.
    """
    timeout = settings.PAYMENT_TIMEOUT_SECONDS if timeout is None else timeout
    fut = _executor.submit(processor.charge, method, amount)
    try:
        return bool(fut.result(timeout=timeout))
    except FutureTimeout:
        logger.warning("Timeout de pago (%ss) method=%s amount=%.2f", timeout, method, amount)
        fut.cancel()
        return False
    except Exception as e:
        logger.warning("Error del procesador de pagos: %s", e)
        return False


_processor: Optional[PaymentProcessor] = None

def get_payment_processor() -> PaymentProcessor:
    global _processor
    if _processor is None:
        _processor = SimulatedPaymentProcessor()
    return _processor
