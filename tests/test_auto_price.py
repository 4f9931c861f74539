from app.sync.bulk_upload import normalize_upload_row
from app.sync.components.auto_price import apply_auto_price_if_needed, calculate_auto_price


def test_highest_is_regular_lowest_is_promo():
    record = {
        "gia_shopee": 520000, "link_shopee": "https://shopee.vn/a",
        "gia_lazada": 480000, "link_lazada": "https://lazada.vn/b",
        "gia_dmx": 610000, "link_dmx": "https://dienmayxanh.com/c",
        "gia_tiki": None,
        "gia_tiktok": 100000,  # not a price source
    }
    res = calculate_auto_price(record)
    assert res.regular_price == 610000
    assert res.promotional_price == 480000
    assert res.external_url == "https://lazada.vn/b"
    assert (res.highest_platform, res.lowest_platform) == ("dmx", "lazada")


def test_no_platform_prices():
    res = calculate_auto_price({"gia_shopee": 0, "gia_lazada": None})
    assert res.regular_price is None
    assert res.external_url is None


def test_apply_only_when_price_missing():
    priced = {"price": 300000, "gia_shopee": 500000}
    out, applied, _ = apply_auto_price_if_needed(priced)
    assert applied is False
    assert out is priced

    unpriced = {"price": 0, "gia_shopee": 500000, "link_shopee": "", "external_url": "https://shop/p/1"}
    out, applied, summary = apply_auto_price_if_needed(unpriced)
    assert applied is True
    assert out["price"] == 500000
    assert out["promotional_price"] == 500000
    assert out["external_url"] == "https://shop/p/1"  # cheapest platform has no link
    assert "500.000₫" in summary
    assert unpriced["price"] == 0


def test_upload_row_normalization():
    row = normalize_upload_row({
        "websiteId": " 15 ",
        "title": " Chảo ",
        "price": "250.000₫",
        "promotionalPrice": "",
        "linkShopee": " https://shopee.vn/x ",
        "giaShopee": "199,000",
        "het_hang": "Hết hàng",
        "category": "ignored",
    })
    assert row == {
        "website_id": "15",
        "title": "Chảo",
        "price": 250000,
        "promotional_price": None,
        "link_shopee": "https://shopee.vn/x",
        "gia_shopee": 199000,
        "het_hang": True,
    }
