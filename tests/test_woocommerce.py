import asyncio
import base64
import json

import httpx
import pytest
from conftest import woo_product, woo_transport

from app.errors import WooFetchError
from app.woo.woocommerce import (
    build_wc_client,
    button_text_for,
    fetch_all_products,
    fetch_product,
    map_record_to_wc_payload,
    ping,
    push_product,
)


def _fetch(project, transport, **kw):
    async def go():
        async with build_wc_client(project, transport=transport) as client:
            return await fetch_all_products(project, client=client, page_delay=0, **kw)
    return asyncio.run(go())


def test_stops_on_short_page(project):
    calls = []
    products = [woo_product(i) for i in range(1, 6)]
    result = _fetch(project, woo_transport(products, calls=calls), page_size=2)

    assert [p.id for p in result] == [1, 2, 3, 4, 5]
    assert [c.url.params["page"] for c in calls] == ["1", "2", "3"]
    assert all(c.url.params["status"] == "publish" for c in calls)
    assert all(c.url.params["per_page"] == "2" for c in calls)
    assert calls[0].url.path == "/wp-json/wc/v3/products"


def test_stops_on_empty_page(project):
    calls = []
    products = [woo_product(i) for i in range(1, 5)]
    result = _fetch(project, woo_transport(products, calls=calls), page_size=2)

    assert len(result) == 4
    assert len(calls) == 3  # third page is empty


def test_page_failure_aborts_whole_fetch(project):
    products = [woo_product(i) for i in range(1, 10)]
    with pytest.raises(WooFetchError) as exc:
        _fetch(project, woo_transport(products, fail_page=2), page_size=3)
    assert exc.value.page == 2
    assert exc.value.status_code == 500
    assert "<html" not in str(exc.value)


def test_transport_error_is_wrapped(project):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(WooFetchError):
        _fetch(project, httpx.MockTransport(handler))


def test_invalid_product_aborts_fetch(project):
    products = [woo_product(1), {"name": "no id"}, woo_product(3)]
    with pytest.raises(WooFetchError) as exc:
        _fetch(project, woo_transport(products), page_size=10)
    assert exc.value.page == 1


def test_loosely_typed_fields_are_accepted(project):
    products = [
        woo_product(1, sku=12345, name=2024, images=[{"id": 3, "src": None}],
                    categories=[{"id": 4, "name": None}], meta_data=[{"key": 7, "value": 1}]),
    ]
    [product] = _fetch(project, woo_transport(products), page_size=10)
    assert (product.sku, product.name) == ("12345", "2024")
    assert product.images[0].src == ""
    assert product.meta_data[0].key == "7"


def test_on_page_callback(project):
    pages = []
    products = [woo_product(i) for i in range(1, 4)]
    _fetch(project, woo_transport(products), page_size=2, on_page=lambda *a: pages.append(a))
    assert pages == [(1, 2, 2), (2, 1, 3)]


def test_basic_auth_uses_project_credentials(project):
    seen = []

    def handler(request):
        seen.append(request.headers.get("authorization"))
        return httpx.Response(200, json=[])

    _fetch(project, httpx.MockTransport(handler))
    expected = "Basic " + base64.b64encode(b"ck_test:cs_test").decode()
    assert seen == [expected]


def test_fetch_product_404_is_none(project):
    def handler(request):
        if request.url.path.endswith("/products/5"):
            return httpx.Response(200, json=woo_product(5))
        return httpx.Response(404, json={"code": "woocommerce_rest_product_invalid_id"})

    async def go():
        async with build_wc_client(project, transport=httpx.MockTransport(handler)) as client:
            return (
                await fetch_product(project, 5, client=client),
                await fetch_product(project, 6, client=client),
            )

    found, missing = asyncio.run(go())
    assert found.id == 5
    assert missing is None


def test_ping(project):
    def ok_handler(request):
        return httpx.Response(200, json=[woo_product(1)])

    def denied_handler(request):
        return httpx.Response(401, json={"code": "woocommerce_rest_cannot_view"})

    async def go(handler):
        async with build_wc_client(project, transport=httpx.MockTransport(handler)) as client:
            return await ping(project, client=client)

    ok = asyncio.run(go(ok_handler))
    assert ok["ok"] is True
    assert ok["sample_count"] == 1
    denied = asyncio.run(go(denied_handler))
    assert denied["ok"] is False
    assert denied["status"] == 401
    assert "Authentication" in denied["error"]


def test_button_text():
    assert button_text_for("https://shopee.vn/product/1") == "Mua tại Shopee"
    assert button_text_for("https://www.lazada.vn/x") == "Mua tại Lazada"
    assert button_text_for("https://example.com") == "Mua ngay"


def test_push_product_payload(project):
    sent = []

    def handler(request):
        sent.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"id": 42})

    record = {
        "website_id": "42",
        "price": 1290000,
        "promotional_price": None,
        "sku": "NC-1",
        "external_url": "https://shopee.vn/a",
        "link_shopee": "https://shopee.vn/a",
        "gia_shopee": 1050000,
        "link_tiki": "",
    }

    async def go():
        async with build_wc_client(project, transport=httpx.MockTransport(handler)) as client:
            return await push_product(project, record, client=client)

    res = asyncio.run(go())
    assert res["ok"] is True
    method, path, body = sent[0]
    assert (method, path) == ("PUT", "/wp-json/wc/v3/products/42")
    assert body["type"] == "external"
    assert body["button_text"] == "Mua tại Shopee"
    assert body["regular_price"] == "1290000"
    assert "sale_price" not in body
    assert {"key": "gia_shopee", "value": "1.050.000"} in body["meta_data"]
    assert all(m["key"] != "link_tiki" for m in body["meta_data"])


def test_push_requires_woo_id(project):
    res = asyncio.run(push_product(project, {"website_id": "manual-abc"}))
    assert res["ok"] is False
    assert map_record_to_wc_payload({}) == {}
