"""Tests for rows, row decoding and packed rows."""

from __future__ import annotations

import pytest

from streams import pack_fields, rle_pack
from typed_cache.ado import AdoType, Column, Descriptor
from typed_cache.descriptors import MemoryDescriptorStore
from typed_cache.errors import (
    BadDescriptorName,
    DescriptorNotFound,
    InvalidRowFields,
    InvalidRowFieldType,
    InvalidRowSize,
)
from typed_cache.rows import (
    DESCRIPTOR_CLASS,
    Row,
    RowDecoder,
    instance_type_name,
    is_descriptor_header,
    make_descriptor_instance,
    rle_unpack,
)
from typed_cache.values import Instance, Value, ValueKind

FIVE = Descriptor.from_pairs(
    "five",
    [
        ("id", AdoType.I4),
        ("name", AdoType.WSTR),
        ("quantity", AdoType.UI2),
        ("price", AdoType.R8),
        ("active", AdoType.BOOL),
    ],
)

MIXED = Descriptor.from_pairs(
    "mixed",
    [
        ("a", AdoType.I4),
        ("flag", AdoType.BOOL),
        ("b", AdoType.I8),
        ("name", AdoType.STR),
        ("c", AdoType.UI1),
        ("cost", AdoType.CY),
        ("flag2", AdoType.BOOL),
    ],
)


def _row_value(*fields):
    return Value.from_python(tuple(fields))


class TestRle:
    """Test zero-run-length expansion."""

    def test_copy_nibbles(self):
        """A copy nibble n copies 8 - n bytes."""
        assert rle_unpack(b"\x17" + b"A" + b"BCDEFGH") == b"ABCDEFGH"

    def test_zero_nibbles(self):
        """A flagged nibble n stands for n + 1 zero bytes."""
        assert rle_unpack(b"\x88") == b"\x00\x00"
        assert rle_unpack(b"\x0f\x01\x02") == b"\x00" * 8 + b"\x01\x02"

    def test_copy_cut_short_at_end(self):
        """Only the end of input cuts a copy short."""
        assert rle_unpack(b"\x00ABC") == b"ABC"

    def test_empty(self):
        assert rle_unpack(b"") == b""

    def test_packer_agrees(self):
        data = b"\x01\x00\x00\x00\x00\x00\x00\x00\x00\x00\x02\x03" + bytes(range(1, 20))
        assert rle_unpack(rle_pack(data)) == data


class TestRow:
    """Test the Row class."""

    def test_access(self):
        """Fields are reachable by position and by column name."""
        row = Row(FIVE, _row_value(1, "widget", 3, 2.5, True).items)
        assert len(row) == 5
        assert row[1] == Value.string("widget")
        assert row["quantity"] == Value.integer(3)
        assert row.get("price") == 2.5
        assert row.get("missing", "default") == "default"
        assert row.as_dict() == {"id": 1, "name": "widget", "quantity": 3, "price": 2.5, "active": True}

    def test_size_checked(self):
        with pytest.raises(InvalidRowSize):
            Row(FIVE, (Value.integer(1),))


class TestBuildRow:
    """Test row validation against descriptors."""

    def test_valid(self):
        row = RowDecoder().build_row(_row_value(1, "widget", 3, 2.5, True), FIVE)
        assert row.descriptor is FIVE
        assert row.get("name") == "widget"

    def test_list_container(self):
        row = RowDecoder().build_row(Value.from_python([1, "w", 3, 2, False]), FIVE)
        assert row.get("price") == 2

    def test_nulls_allowed(self):
        """None fits every column type."""
        row = RowDecoder().build_row(_row_value(None, None, None, None, None), FIVE)
        assert row.as_dict() == dict.fromkeys(FIVE.column_names)

    def test_wrong_field_count(self):
        """Four fields against five columns is a size error."""
        with pytest.raises(InvalidRowSize):
            RowDecoder().build_row(_row_value(1, "widget", 3, 2.5), FIVE)

    def test_wrong_field_type(self):
        """A string in an integer column is a type error."""
        with pytest.raises(InvalidRowFieldType, match="quantity"):
            RowDecoder().build_row(_row_value(1, "widget", "three", 2.5, True), FIVE)

    def test_integer_out_of_range(self):
        with pytest.raises(InvalidRowFieldType):
            RowDecoder().build_row(_row_value(1, "widget", 70000, 2.5, True), FIVE)

    def test_bool_is_not_integer(self):
        with pytest.raises(InvalidRowFieldType):
            RowDecoder().build_row(_row_value(True, "widget", 3, 2.5, True), FIVE)

    def test_nested_field(self):
        """Fields must be scalars."""
        with pytest.raises(InvalidRowFields):
            RowDecoder().build_row(_row_value(1, ("nested",), 3, 2.5, True), FIVE)

    def test_not_a_sequence(self):
        with pytest.raises(InvalidRowFields):
            RowDecoder().build_row(Value.integer(1), FIVE)

    def test_container_behind_reference(self):
        container = _row_value(1, "widget", 3, 2.5, True)
        row = RowDecoder().build_row(Value.shared_ref(4), FIVE, lambda v: container)
        assert row.get("id") == 1


class TestDescriptorLookup:
    """Test descriptor lookup by name."""

    def test_decode_row_by_name(self):
        rows = RowDecoder(MemoryDescriptorStore([FIVE]))
        row = rows.decode_row(_row_value(1, "w", 3, 2.5, True), "five")
        assert row.descriptor is FIVE

    def test_no_store(self):
        with pytest.raises(DescriptorNotFound):
            RowDecoder().lookup("five")

    def test_unknown_name(self):
        with pytest.raises(DescriptorNotFound):
            RowDecoder(MemoryDescriptorStore([FIVE])).lookup("six")

    def test_bad_name(self):
        with pytest.raises(BadDescriptorName):
            RowDecoder(MemoryDescriptorStore([FIVE])).lookup("")


class TestInlineDescriptor:
    """Test inline descriptor instances."""

    def test_instance_round_trip(self):
        """The inline instance form reads back as the same columns."""
        value = Value.instance_of(make_descriptor_instance(FIVE))
        descriptor = RowDecoder().descriptor_from_value(value)
        assert descriptor.name == DESCRIPTOR_CLASS
        assert descriptor.columns == FIVE.columns

    def test_cached_per_value(self):
        rows = RowDecoder()
        value = Value.instance_of(make_descriptor_instance(FIVE))
        assert rows.descriptor_from_value(value) is rows.descriptor_from_value(value)

    def test_header_helpers(self):
        instance = make_descriptor_instance(FIVE)
        assert is_descriptor_header(instance.header)
        assert instance_type_name(Value.from_python((("a.B", 1), 2))) == "a.B"
        assert instance_type_name(Value.string("c.D")) == "c.D"
        assert instance_type_name(Value.integer(1)) == ""

    def test_malformed(self):
        rows = RowDecoder()
        bad_header = Value.from_python((DESCRIPTOR_CLASS, ((("a",),),)))
        with pytest.raises(InvalidRowFields):
            rows.descriptor_from_value(Value.instance_of(Instance(DESCRIPTOR_CLASS, bad_header)))
        with pytest.raises(InvalidRowFields):
            rows.descriptor_from_value(Value.integer(1))

    def test_resolver_follows_references(self):
        """Back-references anywhere in the header are followed through the resolver."""
        instance = make_descriptor_instance(FIVE)
        slots = {1: instance.header.items[1].items[0], 2: instance.header}

        def resolve(value):
            return slots[value.data] if value.kind == ValueKind.SHARED_REF else value

        header = Value.tuple_of((Value.string(DESCRIPTOR_CLASS), Value.tuple_of((Value.shared_ref(1),))))
        value = Value.instance_of(Instance(DESCRIPTOR_CLASS, header))
        assert RowDecoder().descriptor_from_value(value, resolve).columns == FIVE.columns
        with pytest.raises(InvalidRowFields):
            RowDecoder().descriptor_from_value(value)

        assert is_descriptor_header(Value.shared_ref(2), resolve)
        assert not is_descriptor_header(Value.shared_ref(2))

    def test_resolve_descriptor(self):
        rows = RowDecoder(MemoryDescriptorStore([FIVE]))
        assert rows.resolve_descriptor(Value.string("five")) is FIVE
        with pytest.raises(InvalidRowFields):
            rows.resolve_descriptor(Value.integer(5))


class TestUnpackRow:
    """Test unpacking of packed row payloads."""

    FIELDS = {"a": -5, "flag": True, "b": 2**40, "c": 200, "cost": 12.5, "flag2": False}

    def test_unpack(self):
        """Fixed fields come from the payload, variable fields are supplied."""
        payload = rle_pack(pack_fields(MIXED, self.FIELDS))
        row = RowDecoder().unpack_row(MIXED, payload, [Value.string("thing")])
        assert row.as_dict() == {
            "a": -5,
            "flag": True,
            "b": 2**40,
            "name": "thing",
            "c": 200,
            "cost": 12.5,
            "flag2": False,
        }

    def test_short_payload_zero_padded(self):
        """Trailing zero bytes may be left out of the payload."""
        row = RowDecoder().unpack_row(MIXED, rle_pack(b"\x07"), [Value.none()])
        assert row.get("b") == 7
        assert row.get("a") == 0
        assert row.get("flag") is False

    def test_payload_too_long(self):
        with pytest.raises(InvalidRowSize):
            RowDecoder().unpack_row(MIXED, rle_pack(b"\x01" * (MIXED.packed_size + 1)), [Value.none()])

    def test_variable_field_count(self):
        with pytest.raises(InvalidRowFields):
            RowDecoder().unpack_row(MIXED, b"", [])

    def test_variable_field_type(self):
        """Variable fields are checked against their column type."""
        with pytest.raises(InvalidRowFieldType):
            RowDecoder().unpack_row(MIXED, b"", [Value.integer(1)])
