# clinic_booking/services/pricing.py
from __future__ import annotations
from typing import NamedTuple


class PriceQuote(NamedTuple):
    final_price: float
    applied_discount: float


def calculate_price(base_price: float, vip_discount: float = 0.0, is_vip: bool = False) -> PriceQuote:
    """
    Precio final de un servicio para quien reserva.

    Sin VIP o sin descuento configurado se cobra el precio base. Un descuento
    de 100 deja el precio en 0 (la validación de eso es cosa del llamador).
    """
    if not is_vip or not vip_discount or vip_discount <= 0:
        return PriceQuote(final_price=base_price, applied_discount=0.0)
    return PriceQuote(
        final_price=base_price * (1 - vip_discount / 100),
        applied_discount=vip_discount,
    )


def vip_price_preview(price: float, vip_discount: float) -> tuple[float, float]:
    """(precio VIP redondeado, ahorro redondeado) para el catálogo de beneficios."""
    quote = calculate_price(price, vip_discount, is_vip=True)
    return round(quote.final_price), round(price - quote.final_price)
