from __future__ import annotations

from siteportal.services.security.sanitize import (
    is_valid_content_key,
    is_valid_slug,
    sanitize_payload,
    sanitize_text,
)


def test_slug_rules() -> None:
    assert is_valid_slug("acme-plumbing")
    assert is_valid_slug("a1")
    assert not is_valid_slug("a")
    assert not is_valid_slug("-acme")
    assert not is_valid_slug("acme-")
    assert not is_valid_slug("Acme")
    assert not is_valid_slug("acme_plumbing")
    assert not is_valid_slug("../etc")
    assert not is_valid_slug("a" * 101)
    assert not is_valid_slug(None)


def test_content_key_rules() -> None:
    assert is_valid_content_key("hero_title")
    assert not is_valid_content_key("1hero")
    assert not is_valid_content_key("hero-title")
    assert not is_valid_content_key("")


def test_sanitize_text_strips_markup_and_nul() -> None:
    assert sanitize_text("  <b>Hello</b>\x00 <script>alert(1)</script>world ") == "Hello alert(1)world"


def test_sanitize_payload_recurses_into_strings_only() -> None:
    payload = {
        "title": "<i>Deck</i> repair",
        "price": 120,
        "featured": True,
        "tags": ["<em>new</em>", 3],
        "meta": {"note": "a<br/>b"},
    }
    assert sanitize_payload(payload) == {
        "title": "Deck repair",
        "price": 120,
        "featured": True,
        "tags": ["new", 3],
        "meta": {"note": "ab"},
    }
