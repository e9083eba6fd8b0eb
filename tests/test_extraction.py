# tests/test_extraction.py
import json

import pytest
from bs4 import BeautifulSoup

import importer.extraction as extraction
from importer.errors import InsufficientDataError
from importer.extraction import (
    extract_embedded_json,
    extract_from_html,
    extract_json_ld,
    extract_moq,
    find_product_node,
    merge_missing,
    parse_price_range,
    run_extraction_chain,
)
from importer.models import HtmlFallbackHit, RawPrice, RawProduct

from conftest import load_fixture

BASE_URL = "https://www.alibaba.com/product-detail/Water-Bottle_1600987654321.html"


def soup_of(name):
    return BeautifulSoup(load_fixture(name), "lxml")


def test_parse_price_range():
    r = parse_price_range("$10.00 - $20.00")
    assert (r.from_price, r.to_price, r.amount) == (10.0, 20.0, 10.0)

    single = parse_price_range("USD 15.50")
    assert single.amount == 15.5 and single.from_price is None

    assert parse_price_range("$1,000.00").amount == 1000.0
    assert parse_price_range("US $2.10-3.40 / piece").to_price == 3.4
    assert parse_price_range("Contact supplier") is None
    assert parse_price_range(None) is None


def test_extract_moq():
    assert extract_moq("MOQ: 100") == 100
    assert extract_moq("Min. Order: 50 pieces") == 50
    assert extract_moq("Minimum Order Quantity: 200") == 200
    assert extract_moq("Ships in 3 days") is None


def test_json_ld_product():
    outcome = extract_json_ld(soup_of("alibaba_jsonld.html"))
    assert outcome.kind == "json_ld"
    p = outcome.product
    assert p.title == "LED Desk Lamp with Wireless Charger"
    assert p.price.amount == 12.5
    assert p.moq == 100
    assert p.specs == {"Material": "Aluminium", "Power": "10W"}
    assert len(p.images) == 2


def test_json_ld_inside_graph():
    outcome = extract_json_ld(soup_of("jsonld_no_images.html"))
    assert outcome.kind == "json_ld"
    assert outcome.product.title == "USB-C Charging Cable 2m"
    assert outcome.product.price.amount == 4.2


def test_json_ld_missing_is_insufficient():
    outcome = extract_json_ld(soup_of("html_only.html"))
    assert outcome.kind == "insufficient"


def test_embedded_init_data():
    html = load_fixture("alibaba_init_data.html")
    outcome = extract_embedded_json(BeautifulSoup(html, "lxml"), html, ("globaldata",))
    assert outcome.kind == "embedded_json"
    assert outcome.pattern == "__INIT_DATA__"
    p = outcome.product
    assert p.title == "Portable Bluetooth Speaker 20W"
    assert p.images[0] == "https://s.alicdn.com/kf/speaker-1.jpg"
    assert (p.price.from_price, p.price.to_price) == (3.5, 5.2)
    assert [v.name for v in p.variants] == ["Black", "Blue"]
    assert p.variants[1].price == 4.1
    assert p.moq == 200


def test_embedded_next_data_with_hint_keys():
    html = load_fixture("temu_next_data.html")
    soup = BeautifulSoup(html, "lxml")
    assert extract_embedded_json(soup, html).kind == "insufficient"

    outcome = extract_embedded_json(soup, html, ("store", "goods"))
    assert outcome.kind == "embedded_json"
    assert outcome.pattern == "__NEXT_DATA__"
    assert outcome.product.price.amount == 8.49


def test_find_product_node_respects_depth():
    deep = {"product": {"product": {"product": {"product": {"product": {"product": {"product": {"name": "x"}}}}}}}}
    assert find_product_node(deep) is None
    assert find_product_node({"product": {"name": "ok"}}) == {"name": "ok"}


def test_html_fallback_fields():
    outcome = extract_from_html(soup_of("html_only.html"), BASE_URL)
    assert outcome.kind == "html_fallback"
    p = outcome.product
    assert p.title == "Stainless Steel Water Bottle 750ml"
    assert (p.price.from_price, p.price.to_price) == (10.0, 20.0)
    assert p.images == [
        "https://cdn.example-shop.com/images/bottle-og.jpg",
        "https://www.alibaba.com/images/bottle-1.jpg",
        "https://cdn.example-shop.com/images/bottle-2.jpg",
    ]
    assert p.specs == {"Material": "Stainless steel", "Capacity": "750ml"}
    assert p.moq == 50
    assert p.shipping_estimate == "Ships in 7-12 days"
    assert p.description.startswith("Double-walled")


def test_merge_missing_never_overwrites():
    base = RawProduct(title="From JSON-LD", price=RawPrice(amount=5.0), specs={"A": "1"})
    extra = RawProduct(
        title="From HTML",
        price=RawPrice(amount=9.0),
        images=["https://img.example.com/a.jpg"],
        specs={"A": "2", "B": "3"},
        extracted_by=["html_fallback"],
    )
    merged = merge_missing(base, extra)
    assert merged.title == "From JSON-LD"
    assert merged.price.amount == 5.0
    assert merged.images == ["https://img.example.com/a.jpg"]
    assert merged.specs == {"A": "1", "B": "3"}
    assert merged.extracted_by == ["html_fallback"]
    assert base.images == []


def test_chain_json_ld_without_images_keeps_empty_images():
    p = run_extraction_chain(load_fixture("jsonld_no_images.html"), BASE_URL)
    assert p.title == "USB-C Charging Cable 2m"
    assert p.images == []
    assert p.extracted_by == ["json_ld"]


def test_chain_falls_through_to_html():
    p = run_extraction_chain(load_fixture("html_only.html"), BASE_URL)
    assert p.extracted_by == ["html_fallback"]
    assert p.moq == 50


def test_chain_raises_without_title():
    with pytest.raises(InsufficientDataError):
        run_extraction_chain("<html><body><p>nothing here</p></body></html>", BASE_URL)


def json_ld_page(node, body=""):
    return (
        '<html><head><script type="application/ld+json">'
        f"{json.dumps(node)}"
        f"</script></head><body>{body}</body></html>"
    )


def test_json_ld_value_nodes_and_lists_are_read_as_text():
    page = json_ld_page(
        {
            "@type": "Product",
            "name": {"@value": "Desk Lamp", "@language": "en"},
            "description": ["Warm white LED", "Touch dimmer"],
            "offers": {"price": "12.50", "priceCurrency": {"@value": "EUR"}},
        }
    )
    outcome = extract_json_ld(BeautifulSoup(page, "lxml"))
    assert outcome.kind == "json_ld"
    assert outcome.product.title == "Desk Lamp"
    assert outcome.product.description == "Warm white LED"
    assert outcome.product.price.currency == "EUR"


def test_chain_uses_html_title_when_json_ld_name_is_unreadable():
    page = json_ld_page(
        {"@type": "Product", "name": {"en": "Desk Lamp"}, "offers": {"price": 12.5}},
        body='<h1 class="product-title">LED Desk Lamp</h1>',
    )
    p = run_extraction_chain(page, BASE_URL)
    assert p.title == "LED Desk Lamp"
    assert p.price.amount == 12.5
    assert "html_fallback" in p.extracted_by


def test_invalid_json_ld_product_falls_through_to_next_strategy(monkeypatch):
    def invalid(node):
        return RawProduct(title={"en": "Desk Lamp"})

    monkeypatch.setattr(extraction, "_product_from_json_ld", invalid)
    page = json_ld_page(
        {"@type": "Product", "name": "Desk Lamp"},
        body='<h1 class="product-title">LED Desk Lamp</h1>',
    )
    assert extract_json_ld(BeautifulSoup(page, "lxml")).kind == "insufficient"
    assert run_extraction_chain(page, BASE_URL).extracted_by == ["html_fallback"]


def test_chain_reports_invalid_record_as_insufficient(monkeypatch):
    def invalid(soup, base_url):
        return HtmlFallbackHit(product=RawProduct(images={"a": 1}))

    monkeypatch.setattr(extraction, "extract_from_html", invalid)
    with pytest.raises(InsufficientDataError):
        run_extraction_chain("<html><body><p>nothing</p></body></html>", BASE_URL)
