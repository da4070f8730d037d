"""
FieldSchema 단위 테스트

검증 항목:
- 레코드 크기 = 29 + 20 * n_markers
- 기본 필드 오프셋/폭이 선언 순서대로 누적
- 마커 필드가 속성 단위로 연속 배치 (mx 전체 → my 전체 → ...)
- 음수 n_markers 거부
- FrameSchema 불변성 및 동등성
"""

from __future__ import annotations

import dataclasses

import pytest

from mocap_logger.format.field_schema import (
    BASIC_BYTES,
    BASIC_FIELDS,
    ENCODING_BYTE_WIDTHS,
    HEADER_LENGTH,
    MARKER_BYTES,
    Encoding,
    FrameSchema,
    field_layout,
    record_byte_size,
)


# =============================================================================
# 레코드 크기
# =============================================================================

class TestRecordByteSize:
    def test_basic_bytes_is_29(self):
        # 4 + 8 + 4 + 4*3 + 4*4 + 4 + 1
        assert BASIC_BYTES == 29

    def test_marker_bytes_is_20(self):
        # 5개 마커 필드 × float32
        assert MARKER_BYTES == 20

    @pytest.mark.parametrize("n_markers", [0, 1, 2, 20, 128])
    def test_record_size_formula(self, n_markers):
        assert record_byte_size(n_markers) == 29 + n_markers * 20

    def test_negative_markers_rejected(self):
        with pytest.raises(ValueError):
            record_byte_size(-1)

    def test_encoding_widths_fixed(self):
        assert ENCODING_BYTE_WIDTHS[Encoding.INT32] == 4
        assert ENCODING_BYTE_WIDTHS[Encoding.UINT8] == 1
        assert ENCODING_BYTE_WIDTHS[Encoding.FLOAT32] == 4
        assert ENCODING_BYTE_WIDTHS[Encoding.FLOAT64] == 8

    def test_layout_widths_sum_to_record_size(self):
        layout = field_layout(7)
        assert sum(entry.byte_width for entry in layout) == record_byte_size(7)


# =============================================================================
# 레이아웃
# =============================================================================

class TestFieldLayout:
    def test_basic_field_offsets(self):
        offsets = {entry.name: (entry.byte_offset, entry.byte_width)
                   for entry in field_layout(0)}
        assert offsets["frame_idx"] == (0, 4)
        assert offsets["timestamp"] == (4, 8)
        assert offsets["latency"] == (12, 4)
        assert offsets["pos"] == (16, 12)
        assert offsets["rot"] == (28, 16)
        assert offsets["pos_error"] == (44, 4)
        assert offsets["tracked"] == (48, 1)

    def test_field_order_matches_declaration(self):
        names = [entry.name for entry in field_layout(3)]
        assert names == [
            "frame_idx", "timestamp", "latency", "pos", "rot", "pos_error",
            "tracked", "mx", "my", "mz", "msize", "mres",
        ]

    def test_offsets_are_contiguous(self):
        layout = field_layout(5)
        for previous, current in zip(layout, layout[1:]):
            assert current.byte_offset == previous.byte_end

    def test_marker_fields_grouped_per_attribute(self):
        n_markers = 4
        markers = {entry.name: entry for entry in field_layout(n_markers)
                   if entry.is_marker_field}
        # mx는 기본 필드 직후, 마커 4개 × 4바이트 연속
        assert markers["mx"].byte_offset == BASIC_BYTES
        assert markers["mx"].byte_width == 4 * n_markers
        assert markers["my"].byte_offset == BASIC_BYTES + 4 * n_markers
        assert markers["mres"].byte_offset == BASIC_BYTES + 4 * 4 * n_markers
        assert all(entry.column_count == n_markers for entry in markers.values())

    def test_zero_markers_have_zero_width(self):
        markers = [entry for entry in field_layout(0) if entry.is_marker_field]
        assert len(markers) == 5
        assert all(entry.byte_width == 0 for entry in markers)
        assert all(entry.column_count == 0 for entry in markers)

    def test_column_counts(self):
        counts = {entry.name: entry.column_count for entry in field_layout(2)}
        assert counts["pos"] == 3
        assert counts["rot"] == 4
        assert counts["tracked"] == 1

    def test_marker_fields_are_float32(self):
        for entry in field_layout(3):
            if entry.is_marker_field:
                assert entry.encoding is Encoding.FLOAT32

    def test_dtypes_little_endian(self):
        for entry in field_layout(1):
            assert entry.dtype.itemsize == ENCODING_BYTE_WIDTHS[entry.encoding]
            assert entry.dtype == entry.dtype.newbyteorder("<")

    def test_basic_descriptors_not_marker_fields(self):
        assert not any(descriptor.is_marker_field for descriptor in BASIC_FIELDS)


# =============================================================================
# FrameSchema
# =============================================================================

class TestFrameSchema:
    def test_defaults(self):
        schema = FrameSchema()
        assert schema.n_markers == 0
        assert schema.header_length == HEADER_LENGTH
        assert schema.byte_order == "little"
        assert schema.record_byte_size == 29

    def test_layout_cached(self):
        schema = FrameSchema(n_markers=20)
        assert schema.record_byte_size == 429
        assert len(schema.layout) == 12
        assert len(schema.basic_layout) == 7
        assert len(schema.marker_layout) == 5

    def test_schema_is_immutable(self):
        schema = FrameSchema(n_markers=2)
        with pytest.raises(dataclasses.FrozenInstanceError):
            schema.n_markers = 3

    def test_equal_schemas(self):
        assert FrameSchema(n_markers=3) == FrameSchema(n_markers=3)
        assert FrameSchema(n_markers=3) != FrameSchema(n_markers=4)

    def test_field_layout_returns_copy(self):
        schema = FrameSchema(n_markers=1)
        layout = schema.field_layout()
        layout.clear()
        assert len(schema.layout) == 12

    def test_negative_markers_rejected(self):
        with pytest.raises(ValueError):
            FrameSchema(n_markers=-2)

    def test_invalid_byte_order_rejected(self):
        with pytest.raises(ValueError):
            FrameSchema(byte_order="middle")
