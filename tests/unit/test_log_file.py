"""
LogFile 단위 테스트

검증 항목:
- 헤더: 고정 길이, \\r\\n 구분, n_markers 키 포함, NUL 패딩
- 헤더 파싱: 필수 키 누락/형식 오류 시 HeaderParseError
- 본문 읽기: 불완전 레코드 무시
- LogFileWriter: append 크기 검증, finalize 시 헤더 재기록, 중복 finalize 무시,
  헤더 생성 실패 시 StreamWriteError (파일 핸들 정리, 최종 카운터 공간 확인)
- load_log_file: 파일 없음, 잘린 헤더, record_bytes 불일치, strict 모드
"""

from __future__ import annotations

import io

import numpy as np
import pytest

from mocap_logger.capture import Frame
from mocap_logger.format import (
    HeaderParseError,
    LogFileNotFoundError,
    SchemaMismatchError,
    StreamWriteError,
    TruncatedRecordError,
)
from mocap_logger.format.field_schema import HEADER_LENGTH, FrameSchema
from mocap_logger.format.frame_codec import FrameCodec
from mocap_logger.format.log_file import (
    LINE_TERMINATOR,
    LogFileWriter,
    format_header,
    load_log_file,
    parse_header,
    read_body,
    read_header,
)


# =============================================================================
# 헬퍼
# =============================================================================

def _make_frame(frame_idx: int, n_markers: int) -> Frame:
    markers = np.arange(n_markers, dtype=np.float32) + frame_idx
    return Frame(
        frame_idx=frame_idx,
        timestamp=frame_idx * 0.01,
        latency=0.002,
        pos=[0.1, 0.2, 0.3],
        rot=[0.0, 0.0, 0.0, 1.0],
        pos_error=0.0005,
        tracked=1,
        mx=markers,
        my=markers * 2,
        mz=markers * 3,
        msize=np.full(n_markers, 0.014),
        mres=np.full(n_markers, 0.0002),
    )


def _write_log(path, n_markers: int, frame_indices) -> list[bytes]:
    """프레임을 기록한 로그 파일을 만들고 레코드 목록을 반환합니다."""
    schema = FrameSchema(n_markers=n_markers)
    codec = FrameCodec(schema)
    writer = LogFileWriter(path, schema)
    writer.open({"session_id": "test"})
    records = []
    for frame_idx in frame_indices:
        record = codec.encode(_make_frame(frame_idx, n_markers))
        writer.append(record)
        records.append(record)
    writer.finalize({"status": "complete", "frames": len(records)})
    return records


# =============================================================================
# 헤더
# =============================================================================

class TestHeader:
    def test_header_fixed_length(self):
        header = format_header(FrameSchema(n_markers=20), {"session_id": "abc"})
        assert len(header) == HEADER_LENGTH

    def test_header_contains_n_markers_line(self):
        header = format_header(FrameSchema(n_markers=20))
        assert b"n_markers=20" + LINE_TERMINATOR.encode() in header

    def test_header_padded_with_nul(self):
        header = format_header(FrameSchema(n_markers=1))
        assert header.endswith(b"\x00")

    def test_schema_keys_cannot_be_overridden(self):
        header = format_header(FrameSchema(n_markers=2), {"n_markers": 99})
        assert parse_header(header).n_markers == 2

    def test_schema_keys_come_first(self):
        header = format_header(FrameSchema(n_markers=2), {"session_id": "abc"})
        lines = header.rstrip(b"\x00").decode("ascii").split(LINE_TERMINATOR)
        assert lines[0] == "format=mtv"
        assert lines[2] == "n_markers=2"
        assert "session_id=abc" in lines

    def test_oversized_header_rejected(self):
        with pytest.raises(ValueError):
            format_header(FrameSchema(), {"note": "x" * HEADER_LENGTH})

    def test_line_break_in_value_rejected(self):
        with pytest.raises(ValueError):
            format_header(FrameSchema(), {"note": "a\r\nn_markers=3"})

    def test_parse_round_trip_metadata(self):
        header = format_header(FrameSchema(n_markers=5), {"session_id": "abc", "empty": None})
        parsed = parse_header(header)
        assert parsed.n_markers == 5
        assert parsed.metadata["session_id"] == "abc"
        assert parsed.metadata["empty"] == ""
        assert parsed.get_int("record_bytes") == 129
        assert parsed.get_int("empty") is None

    def test_parse_tolerates_unknown_lines(self):
        raw = b"comment without separator\r\nn_markers=3\r\nextra=1\r\n".ljust(64, b"\x00")
        assert parse_header(raw).n_markers == 3

    def test_missing_n_markers_raises(self):
        raw = b"format=mtv\r\nversion=1\r\n".ljust(64, b"\x00")
        with pytest.raises(HeaderParseError):
            parse_header(raw)

    def test_non_integer_n_markers_raises(self):
        raw = b"n_markers=abc\r\n".ljust(64, b"\x00")
        with pytest.raises(HeaderParseError):
            parse_header(raw)

    def test_negative_n_markers_raises(self):
        raw = b"n_markers=-1\r\n".ljust(64, b"\x00")
        with pytest.raises(HeaderParseError):
            parse_header(raw)

    def test_unknown_byte_order_raises(self):
        raw = b"n_markers=1\r\nbyte_order=middle\r\n".ljust(64, b"\x00")
        with pytest.raises(HeaderParseError, match="byte_order"):
            parse_header(raw)

    def test_get_int_non_integer_raises(self):
        parsed = parse_header(b"n_markers=1\r\nframes=many\r\n")
        with pytest.raises(HeaderParseError):
            parsed.get_int("frames")

    def test_read_header_short_input_raises(self):
        with pytest.raises(HeaderParseError):
            read_header(io.BytesIO(b"n_markers=1\r\n"), HEADER_LENGTH)


# =============================================================================
# 본문 읽기
# =============================================================================

class TestReadBody:
    def test_complete_records(self):
        body, n_frames = read_body(io.BytesIO(b"a" * 58), 29)
        assert n_frames == 2
        assert len(body) == 58

    def test_trailing_partial_record_dropped(self, caplog):
        body, n_frames = read_body(io.BytesIO(b"a" * 70), 29)
        assert n_frames == 2
        assert len(body) == 58
        assert "불완전 레코드" in caplog.text

    def test_empty_body(self):
        assert read_body(io.BytesIO(b""), 29) == (b"", 0)


# =============================================================================
# LogFileWriter
# =============================================================================

class TestLogFileWriter:
    def test_open_creates_file_with_header(self, tmp_path):
        path = tmp_path / "nested" / "capture.mtv"
        writer = LogFileWriter(path, FrameSchema(n_markers=3))
        writer.open({"status": "recording"})

        assert path.exists()
        assert not writer.closed
        writer.finalize()
        assert path.stat().st_size == HEADER_LENGTH

    def test_append_and_finalize_sizes(self, tmp_path):
        path = tmp_path / "capture.mtv"
        records = _write_log(path, 4, range(10))

        schema = FrameSchema(n_markers=4)
        assert path.stat().st_size == HEADER_LENGTH + len(records) * schema.record_byte_size
        assert path.read_bytes()[HEADER_LENGTH:] == b"".join(records)

    def test_append_wrong_size_raises(self, tmp_path):
        writer = LogFileWriter(tmp_path / "capture.mtv", FrameSchema(n_markers=1))
        writer.open()
        with pytest.raises(SchemaMismatchError):
            writer.append(b"\x00" * 29)
        writer.finalize()

    def test_append_after_close_raises(self, tmp_path):
        writer = LogFileWriter(tmp_path / "capture.mtv", FrameSchema())
        writer.open()
        writer.finalize()
        with pytest.raises(StreamWriteError):
            writer.append(b"\x00" * 29)

    def test_finalize_rewrites_header(self, tmp_path):
        path = tmp_path / "capture.mtv"
        _write_log(path, 0, range(3))

        with open(path, "rb") as log_file:
            header = read_header(log_file)
        assert header.metadata["status"] == "complete"
        assert header.get_int("frames") == 3
        assert header.metadata["session_id"] == "test"

    def test_finalize_is_idempotent(self, tmp_path):
        path = tmp_path / "capture.mtv"
        writer = LogFileWriter(path, FrameSchema(n_markers=2))
        writer.open()
        writer.append(b"\x00" * FrameSchema(n_markers=2).record_byte_size)
        writer.finalize({"status": "complete"})
        size = path.stat().st_size

        writer.finalize({"status": "overwritten"})

        assert writer.closed
        assert path.stat().st_size == size
        with open(path, "rb") as log_file:
            assert read_header(log_file).metadata["status"] == "complete"

    def test_abort_keeps_initial_header(self, tmp_path):
        path = tmp_path / "capture.mtv"
        writer = LogFileWriter(path, FrameSchema())
        writer.open({"status": "recording"})
        writer.abort()
        writer.finalize({"status": "complete"})

        with open(path, "rb") as log_file:
            assert read_header(log_file).metadata["status"] == "recording"

    def test_bytes_written(self, tmp_path):
        writer = LogFileWriter(tmp_path / "capture.mtv", FrameSchema(n_markers=1))
        writer.open()
        writer.append(b"\x00" * 49)
        writer.append(b"\x00" * 49)
        assert writer.records_written == 2
        assert writer.bytes_written == HEADER_LENGTH + 98
        writer.finalize()

    def test_open_failure_raises_stream_write_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        writer = LogFileWriter(blocker / "capture.mtv", FrameSchema())
        with pytest.raises(StreamWriteError):
            writer.open()
        assert writer.closed

    def test_open_oversized_header_creates_no_file(self, tmp_path):
        path = tmp_path / "capture.mtv"
        writer = LogFileWriter(path, FrameSchema())
        with pytest.raises(StreamWriteError):
            writer.open({"session_id": "b" * 600})
        assert writer.closed
        assert not path.exists()

    def test_open_line_break_in_metadata_raises(self, tmp_path):
        path = tmp_path / "capture.mtv"
        writer = LogFileWriter(path, FrameSchema())
        with pytest.raises(StreamWriteError):
            writer.open({"session_id": "a\r\nstatus=forged"})
        assert writer.closed
        assert not path.exists()

    def test_open_checks_room_for_reserved_values(self, tmp_path):
        schema = FrameSchema()
        # 임시 헤더가 header_length를 정확히 채우도록 note 길이 조정
        base_length = len(format_header(schema, {"frames": 0, "note": ""}).rstrip(b"\x00"))
        metadata = {"frames": 0, "note": "n" * (HEADER_LENGTH - base_length)}

        fitting = LogFileWriter(tmp_path / "fits.mtv", schema)
        fitting.open(metadata)
        assert not fitting.closed
        fitting.abort()

        path = tmp_path / "capture.mtv"
        writer = LogFileWriter(path, schema)
        with pytest.raises(StreamWriteError):
            writer.open(metadata, reserved={"frames": 2**64 - 1})
        assert writer.closed
        assert not path.exists()

    def test_finalize_oversized_header_raises_and_closes(self, tmp_path):
        path = tmp_path / "capture.mtv"
        schema = FrameSchema(n_markers=1)
        writer = LogFileWriter(path, schema)
        writer.open({"status": "recording"})
        writer.append(FrameCodec(schema).encode(_make_frame(1, 1)))

        with pytest.raises(StreamWriteError):
            writer.finalize({"note": "x" * 600})

        assert writer.closed
        # 임시 헤더와 기록된 레코드는 유지
        data = load_log_file(path)
        assert data.header.metadata["status"] == "recording"
        assert data.n_frames == 1


# =============================================================================
# load_log_file
# =============================================================================

class TestLoadLogFile:
    def test_load_round_trip(self, tmp_path):
        path = tmp_path / "capture.mtv"
        _write_log(path, 3, [100, 101, 102])

        data = load_log_file(path)

        assert data.n_frames == 3
        assert data.n_markers == 3
        assert data.frame_idx[:, 0].tolist() == [100, 101, 102]
        np.testing.assert_array_equal(data.mx[1], np.arange(3, dtype=np.float32) + 101)
        assert data.header.metadata["status"] == "complete"

    def test_load_zero_frames(self, tmp_path):
        path = tmp_path / "capture.mtv"
        _write_log(path, 20, [])

        data = load_log_file(path)

        assert data.n_frames == 0
        assert data.mx.shape == (0, 20)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(LogFileNotFoundError):
            load_log_file(tmp_path / "missing.mtv")

    def test_missing_file_is_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_log_file(tmp_path / "missing.mtv")

    def test_truncated_header_raises(self, tmp_path):
        path = tmp_path / "short.mtv"
        path.write_bytes(b"n_markers=1\r\n")
        with pytest.raises(HeaderParseError):
            load_log_file(path)

    def test_header_without_n_markers_raises(self, tmp_path):
        path = tmp_path / "bad.mtv"
        path.write_bytes(b"format=mtv\r\n".ljust(HEADER_LENGTH, b"\x00"))
        with pytest.raises(HeaderParseError):
            load_log_file(path)

    def test_record_bytes_mismatch_raises(self, tmp_path):
        path = tmp_path / "bad.mtv"
        header = b"n_markers=2\r\nrecord_bytes=30\r\n".ljust(HEADER_LENGTH, b"\x00")
        path.write_bytes(header)
        with pytest.raises(SchemaMismatchError):
            load_log_file(path)

    def test_unknown_byte_order_raises(self, tmp_path):
        path = tmp_path / "bad.mtv"
        path.write_bytes(b"n_markers=0\r\nbyte_order=middle\r\n".ljust(HEADER_LENGTH, b"\x00"))
        with pytest.raises(HeaderParseError, match="byte_order"):
            load_log_file(path)

    def test_trailing_partial_record_ignored(self, tmp_path):
        path = tmp_path / "capture.mtv"
        _write_log(path, 1, range(5))
        with open(path, "ab") as log_file:
            log_file.write(b"\x01" * 10)

        data = load_log_file(path)

        assert data.n_frames == 5

    def test_strict_mode_raises_on_partial_record(self, tmp_path):
        path = tmp_path / "capture.mtv"
        _write_log(path, 1, range(5))
        with open(path, "ab") as log_file:
            log_file.write(b"\x01" * 10)

        with pytest.raises(TruncatedRecordError):
            load_log_file(path, strict=True)

    def test_header_only_file_without_record_bytes(self, tmp_path):
        path = tmp_path / "minimal.mtv"
        path.write_bytes(b"n_markers=4\r\n".ljust(HEADER_LENGTH, b"\x00"))

        data = load_log_file(path)

        assert data.n_frames == 0
        assert data.n_markers == 4
