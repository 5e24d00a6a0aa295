"""
Tests for cache key normalization.
"""
from querycache.cache.keys import key_parts, matches_prefix, normalize_key


def test_structurally_equal_descriptors_normalize_identically():
    """Test that rebuilt descriptors map to the same key"""
    first = ["/api/projects", 12, "rfis"]
    second = ["/api/projects", 12, "rfis"]
    assert first is not second
    assert normalize_key(first) == normalize_key(second)


def test_tuple_and_list_are_equivalent():
    """Test that tuples and lists normalize the same way"""
    assert normalize_key(("/api/user",)) == normalize_key(["/api/user"])


def test_order_is_significant():
    """Test that element order is preserved"""
    assert normalize_key(["a", 1]) != normalize_key([1, "a"])


def test_number_and_string_differ():
    """Test that 12 and "12" are different keys"""
    assert normalize_key(["/api/projects", 12]) != normalize_key(["/api/projects", "12"])


def test_scalar_is_single_element_key():
    """Test that a bare string is a one-element key"""
    assert normalize_key("/api/user") == normalize_key(["/api/user"])


def test_dict_members_are_sorted():
    """Test that dict member order does not fragment keys"""
    a = ["/api/rfis", {"status": "open", "page": 2}]
    b = ["/api/rfis", {"page": 2, "status": "open"}]
    assert normalize_key(a) == normalize_key(b)


def test_unserializable_values_are_accepted():
    """Test that odd values are stringified rather than rejected"""
    key = normalize_key(["/api/things", object])
    assert key.startswith('["/api/things",')


def test_key_parts_roundtrip_is_list():
    """Test that key_parts returns plain lists"""
    assert key_parts(("/api/projects", 3)) == ["/api/projects", 3]


def test_matches_prefix():
    """Test prefix matching on leading elements"""
    parts = key_parts(["/api/projects", 12, "rfis"])
    assert matches_prefix(parts, ["/api/projects"])
    assert matches_prefix(parts, ["/api/projects", 12])
    assert matches_prefix(parts, ["/api/projects", 12, "rfis"])
    assert not matches_prefix(parts, ["/api/projects", 13])
    assert not matches_prefix(parts, ["/api/projects", 12, "rfis", 1])
