import pytest

from clinic_booking.services.pricing import calculate_price, vip_price_preview


def test_non_vip_pays_base_price():
    quote = calculate_price(8500.0, 20.0, is_vip=False)
    assert quote.final_price == 8500.0
    assert quote.applied_discount == 0.0

def test_vip_gets_configured_discount():
    quote = calculate_price(8500.0, 20.0, is_vip=True)
    assert quote.final_price == pytest.approx(6800.0)
    assert quote.applied_discount == 20.0

@pytest.mark.parametrize("discount", [0.0, None, -5.0])
def test_vip_without_discount_pays_base_price(discount):
    quote = calculate_price(1000.0, discount, is_vip=True)
    assert quote.final_price == 1000.0
    assert quote.applied_discount == 0.0

def test_full_discount_is_free():
    assert calculate_price(1000.0, 100.0, is_vip=True).final_price == 0.0

def test_price_preview_rounds():
    assert vip_price_preview(8500.0, 20.0) == (6800, 1700)
    assert vip_price_preview(999.0, 15.0) == (849, 150)
