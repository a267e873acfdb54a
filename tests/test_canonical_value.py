"""Tests for the tagged canonical value."""

import pytest

from models.canonical_value import CanonicalValue, Kind


class TestConstruction:
    """Each kind only accepts its own representation."""

    def test_constructors_set_kind(self):
        assert CanonicalValue.null().kind is Kind.NULL
        assert CanonicalValue.boolean(True).kind is Kind.BOOL
        assert CanonicalValue.number(3).kind is Kind.NUMBER
        assert CanonicalValue.text("x").kind is Kind.TEXT
        assert CanonicalValue.bytes_(b"\x01").kind is Kind.BYTES
        assert CanonicalValue.list_().kind is Kind.LIST
        assert CanonicalValue.map_().kind is Kind.MAP

    def test_text_rejects_number(self):
        with pytest.raises(TypeError):
            CanonicalValue(Kind.TEXT, 1)

    def test_number_rejects_bool(self):
        with pytest.raises(TypeError):
            CanonicalValue.number(True)

    def test_bytes_rejects_str(self):
        with pytest.raises(TypeError):
            CanonicalValue(Kind.BYTES, "AQ==")

    def test_list_items_must_be_values(self):
        with pytest.raises(TypeError):
            CanonicalValue(Kind.LIST, (1, 2))

    def test_map_keys_must_be_text(self):
        with pytest.raises(TypeError):
            CanonicalValue(Kind.MAP, {1: CanonicalValue.null()})

    def test_only_bytes_can_be_secret(self):
        with pytest.raises(TypeError):
            CanonicalValue(Kind.TEXT, "x", True)
        assert CanonicalValue.bytes_(b"k", secret=True).secret


class TestHelpers:
    """Accessors and plain conversion."""

    def test_map_equality_ignores_key_order(self):
        a = CanonicalValue.map_({"x": CanonicalValue.number(1), "y": CanonicalValue.text("b")})
        b = CanonicalValue.map_({"y": CanonicalValue.text("b"), "x": CanonicalValue.number(1)})
        assert a == b

    def test_list_equality_respects_order(self):
        one, two = CanonicalValue.number(1), CanonicalValue.number(2)
        assert CanonicalValue.list_([one, two]) != CanonicalValue.list_([two, one])

    def test_get_on_non_map_returns_default(self):
        assert CanonicalValue.text("x").get("a") is None

    def test_items_on_list_raises(self):
        with pytest.raises(TypeError):
            CanonicalValue.list_().items()

    def test_empty_container(self):
        assert CanonicalValue.map_().is_empty_container()
        assert CanonicalValue.list_().is_empty_container()
        assert not CanonicalValue.text("").is_empty_container()

    def test_to_plain(self):
        value = CanonicalValue.map_({
            "psk": CanonicalValue.bytes_(b"\x01", secret=True),
            "ids": CanonicalValue.list_([CanonicalValue.number(1), CanonicalValue.null()]),
            "on": CanonicalValue.boolean(False),
        })
        assert value.to_plain() == {"psk": "AQ==", "ids": [1, None], "on": False}
