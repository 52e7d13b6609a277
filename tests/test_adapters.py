import httpx
import pytest

from src.backend.stocksync.integrations import pos_base, pos_clover
from src.backend.stocksync.integrations.pos_base import PosCredentials, clamp_quantity, get_adapter
from src.backend.stocksync.inventory.errors import ProviderTransportError, RateLimited

CLOVER = PosCredentials(provider="clover", access_token="tok", merchant_id="m1")
SQUARE = PosCredentials(provider="square", access_token="sq-tok", merchant_id="MS1", location_id="L1")


def test_clamp_quantity_handles_junk_and_negatives():
    assert clamp_quantity("7") == 7
    assert clamp_quantity(3.9) == 3
    assert clamp_quantity(-4) == 0
    assert clamp_quantity(None) == 0
    assert clamp_quantity("n/a") == 0


def test_get_adapter_rejects_unknown_provider():
    with pytest.raises(ValueError):
        get_adapter("toast")


def test_clover_page_normalizes_and_drops_hidden(fake_clover, catalog):
    fake = fake_clover(
        [
            catalog.clover_item(1, 12),
            catalog.clover_item(2, 4, hidden=True),
            catalog.clover_item(3, -2, categories={"elements": []}, price=None),
        ]
    )
    adapter = fake.adapter_factory()("clover")
    page = adapter.fetch_page(CLOVER, None)

    assert page.raw_count == 3
    assert page.next_cursor is None
    assert [i.remote_id for i in page.items] == ["ITEM1", "ITEM3"]
    first, third = page.items
    assert (first.name, first.quantity, first.category, first.unit_price, first.sku) == ("Item 1", 12, "Drinks", 100, "SKU-1")
    assert third.quantity == 0
    assert third.category is None
    assert third.unit_price is None

    req = fake.calls[0]
    assert req.headers["authorization"] == "Bearer tok"
    assert req.url.params["expand"] == "itemStock,categories"
    assert req.url.params["offset"] == "0"


def test_clover_full_page_yields_offset_cursor(fake_clover, catalog, monkeypatch):
    monkeypatch.setattr(pos_clover, "PAGE_LIMIT", 2)
    fake = fake_clover([catalog.clover_item(i, i) for i in range(1, 6)])
    adapter = fake.adapter_factory()("clover")

    page = adapter.fetch_page(CLOVER, None)
    assert page.next_cursor == "2"
    page = adapter.fetch_page(CLOVER, page.next_cursor)
    assert [i.remote_id for i in page.items] == ["ITEM3", "ITEM4"]
    page = adapter.fetch_page(CLOVER, page.next_cursor)
    assert page.next_cursor is None
    assert [i.remote_id for i in page.items] == ["ITEM5"]


def test_rate_limit_sleeps_default_then_retries_same_request(fake_clover, catalog):
    sleeps = []
    fake = fake_clover([catalog.clover_item(1, 5)], throttle=1)
    page = fake.adapter_factory(sleeps)("clover").fetch_page(CLOVER, None)

    assert len(fake.calls) == 2
    assert fake.calls[0].url == fake.calls[1].url
    assert sleeps == [3.0]
    assert len(page.items) == 1


def test_rate_limit_honours_retry_after_header(fake_clover, catalog):
    sleeps = []
    fake = fake_clover([catalog.clover_item(1, 5)], throttle=2, retry_after="7")
    fake.adapter_factory(sleeps)("clover").fetch_page(CLOVER, None)
    assert sleeps == [7.0, 7.0]
    assert len(fake.calls) == 3


def test_rate_limit_gives_up_after_max_retries(fake_clover, catalog, monkeypatch):
    monkeypatch.setattr(pos_base, "RATE_LIMIT_MAX_RETRIES", 2)
    sleeps = []
    fake = fake_clover([catalog.clover_item(1, 5)], throttle=100)
    with pytest.raises(RateLimited):
        fake.adapter_factory(sleeps)("clover").fetch_page(CLOVER, None)
    assert len(sleeps) == 2
    assert len(fake.calls) == 3


def test_clover_server_error_is_transport_error(fake_clover, catalog):
    fake = fake_clover([catalog.clover_item(1, 5)], fail_at_offset=0)
    with pytest.raises(ProviderTransportError) as exc:
        fake.adapter_factory()("clover").fetch_page(CLOVER, None)
    assert exc.value.status_code == 502


def test_non_json_success_body_is_transport_error(fake_clover, catalog):
    fake = fake_clover([catalog.clover_item(1, 5)], garbage_at_offset=0)
    with pytest.raises(ProviderTransportError) as exc:
        fake.adapter_factory()("clover").fetch_page(CLOVER, None)
    assert exc.value.status_code == 200


def test_clover_fetch_one(fake_clover, catalog):
    fake = fake_clover([catalog.clover_item(1, 5), catalog.clover_item(2, 9)])
    item = fake.adapter_factory()("clover").fetch_one(CLOVER, "ITEM2")
    assert item.remote_id == "ITEM2"
    assert item.quantity == 9


def _square_counts():
    return [
        {"catalog_object_id": "SQVAR1-0", "state": "IN_STOCK", "quantity": "4", "location_id": "L1"},
        {"catalog_object_id": "SQVAR1-0", "state": "WASTE", "quantity": "2", "location_id": "L1"},
        {"catalog_object_id": "SQVAR1-1", "state": "IN_STOCK", "quantity": "9", "location_id": "L1"},
        {"catalog_object_id": "SQVAR2-0", "state": "IN_STOCK", "quantity": "11", "location_id": "L1"},
    ]


def test_square_page_uses_first_variation_in_stock_count(fake_square, catalog):
    fake = fake_square(
        [
            catalog.square_category("CAT1", "Snacks"),
            catalog.square_item(1, category_id="CAT1", variations=2),
            catalog.square_item(2),
            catalog.square_item(3, archived=True),
            catalog.square_item(4, deleted=True),
        ],
        _square_counts(),
    )
    page = fake.adapter_factory()("square").fetch_page(SQUARE, None)

    assert page.raw_count == 5
    assert page.next_cursor is None
    by_id = {i.remote_id: i for i in page.items}
    assert set(by_id) == {"SQITEM1", "SQITEM2"}
    assert by_id["SQITEM1"].quantity == 4
    assert by_id["SQITEM1"].category == "Snacks"
    assert by_id["SQITEM1"].unit_price == 250
    assert by_id["SQITEM1"].sku == "SQ-SKU-1"
    assert by_id["SQITEM2"].quantity == 11

    list_req = fake.calls[0]
    assert list_req.url.params["types"] == "ITEM,CATEGORY"
    assert list_req.headers["square-version"]
    assert list_req.headers["authorization"] == "Bearer sq-tok"


def test_square_cursor_is_passed_through(fake_square, catalog):
    fake = fake_square([catalog.square_item(i) for i in range(1, 4)], [], page_size=2)
    adapter = fake.adapter_factory()("square")
    page = adapter.fetch_page(SQUARE, None)
    assert page.next_cursor == "2"
    page = adapter.fetch_page(SQUARE, page.next_cursor)
    assert page.next_cursor is None
    assert [i.remote_id for i in page.items] == ["SQITEM3"]
    assert page.items[0].quantity == 0


def test_square_fetch_one_resolves_variation_to_item(fake_square, catalog):
    fake = fake_square(
        [catalog.square_category("CAT1", "Snacks"), catalog.square_item(1, category_id="CAT1", variations=2)],
        _square_counts(),
    )
    item = fake.adapter_factory()("square").fetch_one(SQUARE, "SQVAR1-1")
    assert item.remote_id == "SQITEM1"
    assert item.quantity == 4
    assert item.category == "Snacks"


def test_square_fetch_one_unknown_object_raises(fake_square):
    fake = fake_square([], [])
    with pytest.raises(ProviderTransportError):
        fake.adapter_factory()("square").fetch_one(SQUARE, "NOPE")


def test_transport_failures_propagate_as_httpx_errors():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(boom))
    with pytest.raises(httpx.HTTPError):
        get_adapter("clover", client=client).fetch_page(CLOVER, None)
