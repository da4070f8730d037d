"""
.mtv 로그 파일 입출력 모듈입니다.

역할:
- 고정 길이 텍스트 헤더(key=value 줄, \\r\\n 구분) 생성 및 파싱
- append 전용 바이너리 본문 쓰기 (LogFileWriter)
- 헤더/본문 읽기 및 전체 파일 로드 (load_log_file)

파일 구조:
    [헤더: header_length 바이트, ASCII, NUL 패딩][레코드 0][레코드 1]...

헤더 예시:
    format=mtv
    version=1
    n_markers=20
    record_bytes=429
    ...

사용 예시:
    >>> writer = LogFileWriter("capture.mtv", FrameSchema(n_markers=20))
    >>> writer.open({"session_id": "abc"})
    >>> writer.append(codec.encode(frame))
    >>> writer.finalize({"status": "complete"})
    >>> data = load_log_file("capture.mtv")
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional

from mocap_logger.format import (
    HeaderParseError,
    LogFileNotFoundError,
    SchemaMismatchError,
    StreamWriteError,
    TruncatedRecordError,
)
from mocap_logger.format.field_schema import BYTE_ORDERS, HEADER_LENGTH, FrameSchema
from mocap_logger.format.frame_codec import CaptureData, FrameCodec

logger = logging.getLogger(__name__)

FORMAT_NAME = "mtv"
FORMAT_VERSION = 1

# 헤더 줄 구분자
LINE_TERMINATOR = "\r\n"

# 헤더 필수 키
N_MARKERS_KEY = "n_markers"

_PAD_BYTE = b"\x00"


@dataclass
class LogHeader:
    """
    파싱된 로그 파일 헤더입니다.

    필드:
        n_markers: 마커 수 (레코드 크기 결정)
        metadata: 헤더의 모든 key=value 항목 (문자열)
    """
    n_markers: int
    metadata: dict[str, str] = field(default_factory=dict)

    def get_int(self, key: str) -> Optional[int]:
        """정수형 메타데이터 값을 반환합니다. 없거나 비어 있으면 None."""
        value = self.metadata.get(key, "")
        if value == "":
            return None
        try:
            return int(value)
        except ValueError as exc:
            raise HeaderParseError(
                f"헤더 키 '{key}'의 값이 정수가 아닙니다: '{value}'"
            ) from exc


# =============================================================================
# 헤더 생성/파싱
# =============================================================================

def format_header(schema: FrameSchema, metadata: Optional[dict] = None) -> bytes:
    """
    스키마와 메타데이터로 고정 길이 헤더 바이트를 생성합니다.

    format/version/n_markers/record_bytes/byte_order/header_length는
    스키마에서 결정되며 metadata로 덮어쓸 수 없습니다.

    파라미터:
        schema: 프레임 스키마
        metadata: 추가 key=value 항목 (None 값은 빈 문자열로 기록)

    반환값:
        bytes: 길이가 schema.header_length인 헤더

    에러:
        ValueError: 헤더 내용이 header_length를 초과하거나 키/값에 줄바꿈, '='이 포함될 때
    """
    entries: dict[str, object] = dict(metadata or {})
    entries.update({
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        N_MARKERS_KEY: schema.n_markers,
        "record_bytes": schema.record_byte_size,
        "byte_order": schema.byte_order,
        "header_length": schema.header_length,
    })

    # 스키마 키를 앞쪽에 배치
    ordered_keys = ["format", "version", N_MARKERS_KEY, "record_bytes",
                    "byte_order", "header_length"]
    ordered_keys += [key for key in entries if key not in ordered_keys]

    lines = []
    for key in ordered_keys:
        value = "" if entries[key] is None else str(entries[key])
        if "=" in key or any(c in key + value for c in "\r\n"):
            raise ValueError(f"헤더 항목에 허용되지 않는 문자가 있습니다: {key}={value!r}")
        lines.append(f"{key}={value}")

    text = (LINE_TERMINATOR.join(lines) + LINE_TERMINATOR).encode("ascii")
    if len(text) > schema.header_length:
        raise ValueError(
            f"헤더 길이 초과: {len(text)}바이트 > {schema.header_length}바이트"
        )
    return text.ljust(schema.header_length, _PAD_BYTE)


def parse_header(raw: bytes) -> LogHeader:
    """
    헤더 바이트를 파싱합니다.

    줄 단위로 key=value를 읽고 n_markers 키를 찾습니다.

    에러:
        HeaderParseError: n_markers 키가 없거나 0 이상의 정수가 아닐 때,
            byte_order 값을 지원하지 않을 때
    """
    text = raw.rstrip(_PAD_BYTE).decode("ascii", errors="replace")

    metadata: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        metadata[key.strip()] = value.strip().rstrip("\x00")

    if N_MARKERS_KEY not in metadata:
        raise HeaderParseError(
            f"헤더 파싱 실패: 필수 키 '{N_MARKERS_KEY}'를 찾을 수 없습니다"
        )

    raw_value = metadata[N_MARKERS_KEY]
    try:
        n_markers = int(raw_value)
    except ValueError as exc:
        raise HeaderParseError(
            f"헤더 파싱 실패: '{N_MARKERS_KEY}' 값이 정수가 아닙니다: '{raw_value}'"
        ) from exc
    if n_markers < 0:
        raise HeaderParseError(
            f"헤더 파싱 실패: '{N_MARKERS_KEY}' 값이 음수입니다: {n_markers}"
        )

    byte_order = metadata.get("byte_order", "")
    if byte_order and byte_order not in BYTE_ORDERS:
        raise HeaderParseError(
            f"헤더 파싱 실패: 'byte_order' 값은 {BYTE_ORDERS} 중 하나여야 합니다: '{byte_order}'"
        )

    return LogHeader(n_markers=n_markers, metadata=metadata)


def read_header(fileobj: BinaryIO, header_length: int = HEADER_LENGTH) -> LogHeader:
    """
    파일 시작 위치에서 고정 길이 헤더를 읽어 파싱합니다.

    에러:
        HeaderParseError: 헤더 길이보다 짧은 파일이거나 파싱 실패 시
    """
    raw = fileobj.read(header_length)
    if len(raw) < header_length:
        raise HeaderParseError(
            f"헤더 파싱 실패: 헤더가 잘렸습니다 ({len(raw)}/{header_length}바이트)"
        )
    return parse_header(raw)


def read_body(fileobj: BinaryIO, record_byte_size: int) -> tuple[bytes, int]:
    """
    헤더 이후의 본문을 읽어 완전한 레코드만 반환합니다.

    마지막의 불완전 레코드(중단된 쓰기 등)는 경고 로그를 남기고 버립니다.

    파라미터:
        fileobj: 헤더 직후 위치의 바이너리 파일 객체
        record_byte_size: 레코드 1개 크기

    반환값:
        tuple[bytes, int]: (완전한 레코드 버퍼, 레코드 수)
    """
    body = fileobj.read()
    n_frames, remainder = divmod(len(body), record_byte_size)
    if remainder:
        logger.warning(
            f"본문 끝 불완전 레코드 무시: {remainder}바이트 "
            f"(레코드 크기 {record_byte_size}바이트, 완전한 레코드 {n_frames}개)"
        )
        body = body[:n_frames * record_byte_size]
    return body, n_frames


# =============================================================================
# 쓰기
# =============================================================================

class LogFileWriter:
    """
    .mtv 로그 파일 쓰기 클래스입니다.

    open() 시 임시 헤더를 기록하고, append()로 레코드를 이어 쓰며,
    finalize() 시 최종 메타데이터로 헤더를 제자리에서 다시 쓴 뒤 닫습니다.
    헤더 길이가 고정이므로 본문 위치는 바뀌지 않습니다.

    파일 핸들은 세션이 독점합니다.
    """

    def __init__(self, filepath: str | Path, schema: FrameSchema) -> None:
        self._filepath = Path(filepath)
        self._schema = schema
        self._file: Optional[BinaryIO] = None
        self._metadata: dict = {}
        self._records_written: int = 0
        self._finalized: bool = False

    @property
    def filepath(self) -> Path:
        return self._filepath

    @property
    def closed(self) -> bool:
        return self._file is None

    @property
    def records_written(self) -> int:
        return self._records_written

    @property
    def bytes_written(self) -> int:
        """헤더를 포함해 현재까지 기록된 바이트 수"""
        return self._schema.header_length + self._records_written * self._schema.record_byte_size

    def open(
        self,
        metadata: Optional[dict] = None,
        reserved: Optional[dict] = None,
    ) -> None:
        """
        파일을 새로 만들고 임시 헤더를 기록합니다.

        finalize()에서 값이 커지는 항목은 reserved에 최대값을 넘겨
        헤더 공간을 미리 확인합니다. 헤더는 파일을 만들기 전에 생성합니다.

        파라미터:
            metadata: 임시 헤더에 기록할 항목
            reserved: 길이 검사에만 쓰는 최종 헤더 최대값 (예: frames_acquired)

        에러:
            StreamWriteError: 헤더 생성 실패, 파일 생성/쓰기 실패 시
        """
        if self._file is not None:
            return

        self._metadata = dict(metadata or {})
        try:
            header = format_header(self._schema, self._metadata)
            if reserved:
                format_header(self._schema, {**self._metadata, **reserved})
        except ValueError as exc:
            raise StreamWriteError(f"로그 헤더 생성 실패: {self._filepath}, 오류: {exc}") from exc

        try:
            self._filepath.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self._filepath, "wb")
            self._file.write(header)
            self._file.flush()
        except OSError as exc:
            self._close_quietly()
            raise StreamWriteError(f"로그 파일 열기 실패: {self._filepath}, 오류: {exc}") from exc

        logger.info(
            f"로그 파일 열기: {self._filepath} "
            f"(n_markers={self._schema.n_markers}, "
            f"record_bytes={self._schema.record_byte_size})"
        )

    def append(self, record: bytes) -> None:
        """
        레코드 1개를 본문 끝에 추가합니다.

        에러:
            SchemaMismatchError: 레코드 길이가 스키마 레코드 크기와 다를 때
            StreamWriteError: 파일이 닫혀 있거나 쓰기 실패 시
        """
        if len(record) != self._schema.record_byte_size:
            raise SchemaMismatchError(
                f"레코드 크기 불일치: 예상={self._schema.record_byte_size}, "
                f"실제={len(record)}"
            )
        if self._file is None:
            raise StreamWriteError(f"닫힌 로그 파일에 쓰기 시도: {self._filepath}")

        try:
            self._file.write(record)
        except OSError as exc:
            raise StreamWriteError(f"레코드 쓰기 실패: {self._filepath}, 오류: {exc}") from exc
        self._records_written += 1

    def flush(self) -> None:
        if self._file is None:
            return
        try:
            self._file.flush()
        except OSError as exc:
            raise StreamWriteError(f"로그 파일 flush 실패: {self._filepath}, 오류: {exc}") from exc

    def finalize(self, metadata: Optional[dict] = None) -> None:
        """
        최종 메타데이터로 헤더를 다시 쓰고 파일을 flush/fsync 후 닫습니다.

        두 번째 호출부터는 아무 동작도 하지 않습니다.

        에러:
            StreamWriteError: 헤더 생성/재기록 또는 flush 실패 시 (파일은 닫힘)
        """
        if self._finalized or self._file is None:
            return
        self._finalized = True

        self._metadata.update(metadata or {})
        try:
            self._file.flush()
            self._file.seek(0)
            self._file.write(format_header(self._schema, self._metadata))
            self._file.seek(0, os.SEEK_END)
            self._file.flush()
            os.fsync(self._file.fileno())
        except (OSError, ValueError) as exc:
            raise StreamWriteError(f"로그 파일 마무리 실패: {self._filepath}, 오류: {exc}") from exc
        finally:
            self._close_quietly()

        logger.info(
            f"로그 파일 닫기: {self._filepath} ({self._records_written}개 레코드)"
        )

    def abort(self) -> None:
        """쓰기 실패 후 헤더를 건드리지 않고 파일을 닫습니다."""
        self._finalized = True
        self._close_quietly()

    def _close_quietly(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        except OSError as exc:
            logger.warning(f"로그 파일 닫기 오류 (무시): {exc}")
        self._file = None


# =============================================================================
# 읽기
# =============================================================================

def load_log_file(
    filepath: str | Path,
    strict: bool = False,
    header_length: int = HEADER_LENGTH,
) -> CaptureData:
    """
    .mtv 로그 파일 전체를 읽어 필드별 배열로 복원합니다.

    파라미터:
        filepath: 로그 파일 경로
        strict: True이면 본문 끝 불완전 레코드를 TruncatedRecordError로 처리
        header_length: 헤더 고정 길이

    반환값:
        CaptureData: 필드별 배열 + n_markers + header

    에러:
        LogFileNotFoundError: 파일이 없을 때
        HeaderParseError: 헤더 파싱 실패 시
        SchemaMismatchError: 헤더 record_bytes가 계산된 레코드 크기와 다를 때
        TruncatedRecordError: strict=True이고 불완전 레코드가 있을 때
    """
    filepath = Path(filepath)
    if not filepath.is_file():
        error_message = f"로그 파일을 찾을 수 없습니다: {filepath}"
        logger.error(error_message)
        raise LogFileNotFoundError(error_message)

    with open(filepath, "rb") as log_file:
        header = read_header(log_file, header_length)
        schema = FrameSchema(
            n_markers=header.n_markers,
            header_length=header_length,
            byte_order=header.metadata.get("byte_order") or "little",
        )

        declared_size = header.get_int("record_bytes")
        if declared_size is not None and declared_size != schema.record_byte_size:
            raise SchemaMismatchError(
                f"헤더 record_bytes={declared_size}가 n_markers={schema.n_markers}로 "
                f"계산한 레코드 크기 {schema.record_byte_size}와 다릅니다"
            )

        if strict:
            body = log_file.read()
            data = FrameCodec(schema).decode(body)
        else:
            body, n_frames = read_body(log_file, schema.record_byte_size)
            data = FrameCodec(schema).decode(body, n_frames)

    data.header = header
    logger.info(
        f"로그 파일 로드 완료: {filepath}, "
        f"frames={data.n_frames}, n_markers={data.n_markers}"
    )
    return data
