import unittest

from core import tlv
from tlv_builders import bytes_field, fixed32_field, fixed64_field, tag, token_message, varint, varint_field


class VarintTests(unittest.TestCase):
    def test_single_byte(self):
        self.assertEqual(tlv.read_varint(b"\x05", 0), (5, 1))

    def test_multi_byte_lsb_first(self):
        self.assertEqual(tlv.read_varint(b"\xff\xac\x02", 1), (300, 3))

    def test_large_values_keep_full_precision(self):
        value = 2**70 + 3
        self.assertEqual(tlv.read_varint(varint(value), 0), (value, len(varint(value))))

    def test_truncated_continuation_chain(self):
        with self.assertRaises(tlv.TruncatedData):
            tlv.read_varint(b"\x80\x80", 0)

    def test_read_tag_splits_field_and_wire_type(self):
        self.assertEqual(tlv.read_tag(tag(6, 2), 0), (6, 2, 1))


class SkipFieldTests(unittest.TestCase):
    def _skip_after_tag(self, field: bytes) -> int:
        _, wire_type, pos = tlv.read_tag(field, 0)
        return tlv.skip_field(field, pos, wire_type)

    def test_skips_each_wire_type_exactly(self):
        for field in (
            varint_field(1, 150),
            fixed64_field(2),
            bytes_field(3, "hello"),
            fixed32_field(4),
        ):
            self.assertEqual(self._skip_after_tag(field), len(field))

    def test_unknown_wire_type(self):
        with self.assertRaises(tlv.UnknownWireType):
            tlv.skip_field(b"\x00\x00", 0, 3)

    def test_fixed_width_past_end_is_truncated(self):
        with self.assertRaises(tlv.TruncatedData):
            tlv.skip_field(b"\x00\x00", 0, tlv.FIXED64)

    def test_length_past_end_is_truncated(self):
        with self.assertRaises(tlv.TruncatedData):
            tlv.skip_field(b"\x10ab", 0, tlv.LENGTH_DELIMITED)

    def test_repeated_skips_end_at_buffer_length(self):
        buf = varint_field(1, 2**40) + bytes_field(2, "x" * 200) + fixed32_field(3) + fixed64_field(4)
        offset = 0
        steps = 0
        while offset < len(buf):
            _, wire_type, pos = tlv.read_tag(buf, offset)
            offset = tlv.skip_field(buf, pos, wire_type)
            steps += 1
        self.assertEqual(offset, len(buf))
        self.assertEqual(steps, 4)


class FindFieldTests(unittest.TestCase):
    def test_unrelated_fields_do_not_change_payload(self):
        target = bytes_field(6, b"payload")
        noise_before = varint_field(1, 7) + fixed64_field(2) + bytes_field(3, "other")
        noise_after = fixed32_field(8) + bytes_field(9, "tail")

        self.assertEqual(tlv.find_field(target, 6), b"payload")
        self.assertEqual(tlv.find_field(noise_before + target, 6), b"payload")
        self.assertEqual(tlv.find_field(noise_before + target + noise_after, 6), b"payload")

    def test_returns_first_occurrence(self):
        buf = bytes_field(6, "first") + bytes_field(6, "second")
        self.assertEqual(tlv.find_field(buf, 6), b"first")

    def test_ignores_non_length_delimited_occurrence(self):
        buf = varint_field(6, 1) + bytes_field(6, "text")
        self.assertEqual(tlv.find_field(buf, 6), b"text")

    def test_missing_field(self):
        self.assertIsNone(tlv.find_field(varint_field(1, 1) + bytes_field(2, "x"), 6))

    def test_garbled_tail_yields_none(self):
        buf = varint_field(1, 1) + b"\x32\x50\x0a"
        self.assertIsNone(tlv.find_field(buf, 6))

    def test_empty_buffer(self):
        self.assertIsNone(tlv.find_field(b"", 1))


class ParseLeafStringsTests(unittest.TestCase):
    def test_two_level_token_message(self):
        outer = varint_field(1, 3) + bytes_field(6, token_message("T", "R"))
        inner = tlv.find_field(outer, 6)
        self.assertEqual(
            tlv.parse_leaf_strings(inner, tlv.OAUTH_TOKEN_FIELDS),
            {"access_token": "T", "refresh_token": "R"},
        )

    def test_only_mapped_fields_are_decoded(self):
        buf = bytes_field(1, "a") + bytes_field(2, "b") + bytes_field(3, "c")
        self.assertEqual(tlv.parse_leaf_strings(buf, {2: "middle"}), {"middle": "b"})

    def test_stops_at_malformed_field_keeping_earlier_values(self):
        buf = bytes_field(1, "access") + tag(7, 3) + bytes_field(3, "refresh")
        self.assertEqual(tlv.parse_leaf_strings(buf, tlv.OAUTH_TOKEN_FIELDS), {"access_token": "access"})


if __name__ == "__main__":
    unittest.main()
