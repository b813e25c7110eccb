"""
Unit tests for tenant namespacing and resource path parsing.
"""

import pytest

from dbaas.simplyput_server.api.paths import ResourcePath, parse_resource_path
from dbaas.simplyput_server.documents.namespace import storage_kind
from dbaas.simplyput_server.errors import PathError


class TestStorageKind:
    """Tests for storage_kind()."""

    def test_joins_identity_and_kind(self):
        assert storage_kind("u1", "contact") == "u1--contact"

    def test_distinct_identities_get_distinct_kinds(self):
        """Same logical kind under two callers never shares a storage kind."""
        assert storage_kind("u1", "contact") != storage_kind("u2", "contact")


class TestParseResourcePath:
    """Tests for parse_resource_path()."""

    def test_collection(self):
        path = parse_resource_path("/contact")

        assert path == ResourcePath(kind="contact")
        assert path.is_collection

    def test_entity(self):
        path = parse_resource_path("/contact/12")

        assert path == ResourcePath(kind="contact", entity_id=12)
        assert not path.is_collection

    def test_max_int64_id(self):
        assert parse_resource_path("/c/9223372036854775807").entity_id == 2**63 - 1

    @pytest.mark.parametrize(
        "path",
        [
            "/",
            "",
            "//1",
            "/contact/",
            "/contact/abc",
            "/contact/-1",
            "/contact/0",
            "/contact/+5",
            "/contact/1.5",
            "/contact/9223372036854775808",
            "/contact/1/extra",
            "/contact/١",
        ],
    )
    def test_invalid_paths(self, path):
        """Malformed addresses raise PathError."""
        with pytest.raises(PathError) as exc_info:
            parse_resource_path(path)

        assert exc_info.value.status == 400
