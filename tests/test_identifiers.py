"""Unit tests for identifier classification."""

import pytest

from pixo_sync.identifiers import RemoteRef, SeedRef, classify, is_canonical


class TestIsCanonical:
    """Tests for the UUID shape check."""

    @pytest.mark.parametrize(
        "entity_id",
        [
            "3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6b",
            "3F2A9C1E-8B7D-4E6F-9A0B-1C2D3E4F5A6B",
            "00000000-0000-0000-0000-000000000000",
        ],
    )
    def test_uuid_shapes_are_canonical(self, entity_id):
        assert is_canonical(entity_id)

    @pytest.mark.parametrize(
        "entity_id",
        [
            "n1",
            "u2",
            "",
            "3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6",  # one hex digit short
            "3f2a9c1e8b7d4e6f9a0b1c2d3e4f5a6b",  # no hyphens
            " 3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6b",
            "3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6b\n",
            "g3f2a9c1-8b7d-4e6f-9a0b-1c2d3e4f5a6b",
        ],
    )
    def test_other_strings_are_not_canonical(self, entity_id):
        assert not is_canonical(entity_id)

    @pytest.mark.parametrize("value", [None, 42, b"3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6b"])
    def test_non_strings_are_not_canonical(self, value):
        assert is_canonical(value) is False


class TestClassify:
    """Tests for the tagged reference."""

    def test_uuid_becomes_remote_ref(self):
        ref = classify("3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6b")
        assert ref == RemoteRef("3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6b")

    def test_short_id_becomes_seed_ref(self):
        assert classify("n1") == SeedRef("n1")

    def test_classification_is_stable(self):
        assert classify("n1") == classify("n1")

    def test_match_on_variant(self):
        match classify("u3"):
            case RemoteRef():
                source = "remote"
            case SeedRef(id=seed_id):
                source = f"seed:{seed_id}"
        assert source == "seed:u3"

    def test_refs_are_immutable(self):
        ref = classify("n1")
        with pytest.raises(AttributeError):
            ref.id = "n2"  # type: ignore[misc]
