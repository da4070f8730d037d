"""
프레임 바이너리 코덱 모듈입니다.

역할:
- Frame 1개를 FrameSchema 레이아웃에 따라 고정 크기 레코드(bytes)로 인코딩
- 여러 레코드가 연결된 버퍼를 필드별 컬럼 배열(numpy)로 디코딩
- 디코딩은 인코딩의 정확한 역연산 (값 변환 없이 바이트 재해석만 수행)

디코딩 결과 배열 형태:
- 기본 필드: (n_frames, column_count)   예) pos → (n, 3), frame_idx → (n, 1)
- 마커 필드: (n_frames, n_markers)

사용 예시:
    >>> codec = FrameCodec(FrameSchema(n_markers=2))
    >>> record = codec.encode(frame)
    >>> data = codec.decode(record * 3)
    >>> data.pos.shape
    (3, 3)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from mocap_logger.format import SchemaMismatchError, TruncatedRecordError
from mocap_logger.format.field_schema import FieldLayout, FrameSchema

logger = logging.getLogger(__name__)


@dataclass
class CaptureData:
    """
    로그 파일에서 복원한 필드별 시계열 데이터입니다.

    필드:
        frame_idx ~ tracked: 기본 필드 행렬 (n_frames × column_count)
        mx ~ mres: 마커 필드 행렬 (n_frames × n_markers)
        n_markers: 마커 수
        header: 로그 파일 헤더 (파일에서 로드한 경우에만 설정)
    """
    frame_idx: np.ndarray
    timestamp: np.ndarray
    latency: np.ndarray
    pos: np.ndarray
    rot: np.ndarray
    pos_error: np.ndarray
    tracked: np.ndarray
    mx: np.ndarray
    my: np.ndarray
    mz: np.ndarray
    msize: np.ndarray
    mres: np.ndarray
    n_markers: int = 0
    header: Optional[Any] = field(default=None, repr=False)

    @property
    def n_frames(self) -> int:
        return int(self.frame_idx.shape[0])

    def as_dict(self) -> dict[str, np.ndarray]:
        """필드 이름 → 배열 딕셔너리를 반환합니다 (레이아웃 선언 순서)."""
        return {
            "frame_idx": self.frame_idx,
            "timestamp": self.timestamp,
            "latency": self.latency,
            "pos": self.pos,
            "rot": self.rot,
            "pos_error": self.pos_error,
            "tracked": self.tracked,
            "mx": self.mx,
            "my": self.my,
            "mz": self.mz,
            "msize": self.msize,
            "mres": self.mres,
        }


class FrameCodec:
    """
    FrameSchema 기반 프레임 인코더/디코더입니다.

    레이아웃(오프셋, dtype, 접근자)은 스키마 생성 시 이미 계산되어 있으므로
    encode/decode 루프에서는 이름 기반 조회를 하지 않습니다.
    """

    def __init__(self, schema: FrameSchema) -> None:
        self._schema = schema
        self._layout: tuple[FieldLayout, ...] = schema.layout
        self._record_size: int = schema.record_byte_size

    @property
    def schema(self) -> FrameSchema:
        return self._schema

    @property
    def record_byte_size(self) -> int:
        return self._record_size

    # =========================================================================
    # 인코딩
    # =========================================================================

    def encode(self, frame: Any) -> bytes:
        """
        프레임 1개를 레코드 바이트로 인코딩합니다.

        파라미터:
            frame: Frame (레이아웃 필드 이름과 같은 속성을 가진 객체)

        반환값:
            bytes: 길이가 record_byte_size인 레코드

        에러:
            SchemaMismatchError: 필드 값 개수가 스키마 컬럼 수와 다를 때
                (마커 배열 길이 ≠ n_markers 포함)
        """
        record = bytearray(self._record_size)

        for entry in self._layout:
            values = np.asarray(entry.getter(frame), dtype=entry.dtype).reshape(-1)
            if values.size != entry.column_count:
                if entry.is_marker_field:
                    detail = f"마커 수 불일치 (스키마 n_markers={self._schema.n_markers})"
                else:
                    detail = "컬럼 수 불일치"
                raise SchemaMismatchError(
                    f"필드 '{entry.name}' {detail}: "
                    f"예상={entry.column_count}, 실제={values.size}"
                )
            record[entry.byte_offset:entry.byte_end] = values.tobytes()

        return bytes(record)

    # =========================================================================
    # 디코딩
    # =========================================================================

    def decode(self, buffer: bytes, n_frames: Optional[int] = None) -> CaptureData:
        """
        연결된 레코드 버퍼를 필드별 컬럼 배열로 디코딩합니다.

        파라미터:
            buffer: 레코드 바이트들을 이어붙인 버퍼
            n_frames: 레코드 수. None이면 버퍼 길이로부터 계산

        반환값:
            CaptureData: 필드별 배열

        에러:
            TruncatedRecordError: 버퍼 길이가 레코드 크기의 배수가 아닐 때
            SchemaMismatchError: n_frames가 버퍼 길이와 맞지 않을 때
        """
        buffer_length = len(buffer)
        complete_frames, remainder = divmod(buffer_length, self._record_size)
        if remainder:
            raise TruncatedRecordError(
                f"버퍼 길이 {buffer_length}바이트가 레코드 크기 "
                f"{self._record_size}바이트의 배수가 아닙니다 "
                f"(완전한 레코드 {complete_frames}개 + 잔여 {remainder}바이트)"
            )

        if n_frames is None:
            n_frames = complete_frames
        elif n_frames != complete_frames:
            raise SchemaMismatchError(
                f"n_frames={n_frames}가 버퍼 길이와 맞지 않습니다 "
                f"(버퍼 기준 {complete_frames}개 레코드)"
            )

        records = np.frombuffer(buffer, dtype=np.uint8).reshape(
            n_frames, self._record_size
        )

        columns: dict[str, np.ndarray] = {}
        for entry in self._layout:
            columns[entry.name] = _decode_field(records, entry, n_frames)

        logger.debug(
            f"레코드 디코딩 완료: frames={n_frames}, "
            f"n_markers={self._schema.n_markers}"
        )
        return CaptureData(**columns, n_markers=self._schema.n_markers)


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def _decode_field(records: np.ndarray, entry: FieldLayout, n_frames: int) -> np.ndarray:
    """
    모든 레코드에서 한 필드의 바이트 범위를 모아 dtype으로 재해석합니다.

    마커 필드는 필드 구간을 n_markers개의 동일 크기 구간으로 나눈 결과가
    곧 (n_frames, n_markers) 행렬의 컬럼이 됩니다.
    """
    if n_frames == 0 or entry.byte_width == 0:
        return np.zeros((n_frames, entry.column_count), dtype=entry.dtype)

    # 입력 버퍼와 분리된 쓰기 가능한 배열 (프레임 1개일 때도 복사)
    field_bytes = np.array(records[:, entry.byte_offset:entry.byte_end], copy=True, order="C")
    return field_bytes.view(entry.dtype).reshape(n_frames, entry.column_count)


def encode_frame(frame: Any, schema: FrameSchema) -> bytes:
    """FrameCodec(schema).encode(frame)의 편의 함수입니다."""
    return FrameCodec(schema).encode(frame)


def decode_frames(
    buffer: bytes,
    schema: FrameSchema,
    n_frames: Optional[int] = None,
) -> CaptureData:
    """FrameCodec(schema).decode(buffer, n_frames)의 편의 함수입니다."""
    return FrameCodec(schema).decode(buffer, n_frames)
