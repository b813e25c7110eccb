"""
Unit tests for the document codec.

Tests cover:
- Flattening nested documents into dotted properties
- Arrays as repeated properties
- Decoding, including conflicting property names
- Body parsing errors
"""

import pytest

from dbaas.simplyput_server.documents.codec import decode, encode, parse_document
from dbaas.simplyput_server.errors import EncodingError
from dbaas.simplyput_server.store.base import INT64_MAX, Property


class TestEncode:
    """Tests for encode()."""

    def test_flat_scalars(self):
        """Each scalar becomes one single-valued property."""
        props = encode({"name": "Alice", "age": 30, "score": 1.5, "ok": True, "x": None})

        assert props == [
            Property("name", "Alice"),
            Property("age", 30),
            Property("score", 1.5),
            Property("ok", True),
            Property("x", None),
        ]

    def test_nested_document_uses_dotted_names(self):
        """Nested keys are joined with '.'."""
        props = encode({"address": {"city": "X", "geo": {"lat": 1}}})

        assert props == [
            Property("address.city", "X"),
            Property("address.geo.lat", 1),
        ]

    def test_array_becomes_repeated_property(self):
        """Array elements share a name and are flagged multiple."""
        props = encode({"tags": ["a", "b"]})

        assert props == [
            Property("tags", "a", multiple=True),
            Property("tags", "b", multiple=True),
        ]

    def test_empty_array_and_document_encode_to_nothing(self):
        """Empty containers produce no properties."""
        assert encode({"tags": [], "meta": {}}) == []

    def test_nested_array_is_flattened(self):
        """Arrays inside arrays collapse into the same repeated property."""
        props = encode({"m": [1, [2, 3]]})

        assert [p.value for p in props] == [1, 2, 3]
        assert all(p.name == "m" and p.multiple for p in props)

    def test_document_inside_array_rejected(self):
        """Objects in arrays cannot be represented."""
        with pytest.raises(EncodingError):
            encode({"items": [{"a": 1}]})

    def test_int_out_of_range_rejected(self):
        """Integers must fit in int64."""
        assert encode({"n": INT64_MAX}) == [Property("n", INT64_MAX)]

        with pytest.raises(EncodingError):
            encode({"n": INT64_MAX + 1})

    @pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_float_rejected(self, value):
        """Values with no JSON representation cannot be stored."""
        with pytest.raises(EncodingError):
            encode({"a": 1.5, "b": value})

        with pytest.raises(EncodingError):
            encode({"b": [1.0, value]})

    def test_unsupported_type_rejected(self):
        """Non-JSON values fail the whole encode."""
        with pytest.raises(EncodingError) as exc_info:
            encode({"ok": 1, "bad": object()})

        assert exc_info.value.details["property"] == "bad"


class TestDecode:
    """Tests for decode()."""

    def test_sets_id(self):
        """Decoded documents always carry _id."""
        assert decode([], 7) == {"_id": 7}

    def test_dotted_names_rebuild_nesting(self):
        """Dotted names become nested documents."""
        doc = decode(
            [Property("address.city", "X"), Property("address.zip", "123")],
            1,
        )

        assert doc == {"address": {"city": "X", "zip": "123"}, "_id": 1}

    def test_repeated_names_collect_into_array(self):
        """Repeated names build an array in store order."""
        doc = decode(
            [
                Property("tags", "a", multiple=True),
                Property("tags", "b", multiple=True),
                Property("tags", "c", multiple=True),
            ],
            1,
        )

        assert doc["tags"] == ["a", "b", "c"]

    def test_single_element_array_decodes_as_scalar(self):
        """A one-element array comes back as a bare value."""
        doc = decode(encode({"tags": ["only"]}), 1)

        assert doc["tags"] == "only"

    def test_property_under_scalar_is_dropped(self):
        """A path through an existing scalar is ignored."""
        doc = decode([Property("a", 1), Property("a.b", 2)], 1)

        assert doc == {"a": 1, "_id": 1}

    def test_scalar_over_document_is_dropped(self):
        """A scalar at a path already holding an object is ignored."""
        doc = decode([Property("a.b", 2), Property("a", 1)], 1)

        assert doc == {"a": {"b": 2}, "_id": 1}

    def test_round_trip(self):
        """decode(encode(d)) equals d plus _id."""
        document = {
            "name": "Alice",
            "tags": ["a", "b"],
            "address": {"city": "X", "lines": ["1 Main St", "Apt 2"]},
            "active": False,
            "nothing": None,
            "ratio": 0.25,
        }

        assert decode(encode(document), 42) == {**document, "_id": 42}


class TestParseDocument:
    """Tests for parse_document()."""

    def test_parses_bytes_and_str(self):
        """Bodies may be bytes or text."""
        assert parse_document(b'{"a": 1}') == {"a": 1}
        assert parse_document('{"a": "é"}') == {"a": "é"}

    @pytest.mark.parametrize(
        "body",
        [b"", b"{", b"[1, 2]", b'"text"', b"null", b'{"a": NaN}', b'{"a": Infinity}', b"\xff"],
    )
    def test_rejects_invalid_bodies(self, body):
        """Anything but a JSON object is an encoding error."""
        with pytest.raises(EncodingError):
            parse_document(body)
