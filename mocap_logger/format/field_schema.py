"""
프레임 필드 스키마 정의 모듈입니다.

역할:
- 프레임을 구성하는 필드(이름, 숫자 인코딩, 컬럼 수)를 선언적으로 정의
- 마커 수(n_markers)에 따른 레코드 바이트 레이아웃(오프셋/폭) 계산
- 인코딩별 바이트 폭, 헤더 길이, 바이트 순서를 하나의 불변 스키마 객체로 제공

레코드 구조 (little-endian):
    [기본 필드 29바이트][mx × n][my × n][mz × n][msize × n][mres × n]

마커 필드는 속성 단위로 연속 배치됩니다. 즉 모든 마커의 mx 값이 먼저 오고,
그 다음 모든 마커의 my 값이 옵니다. 디코딩 바이트 범위 계산이 이 배치에 의존합니다.

사용 예시:
    >>> schema = FrameSchema(n_markers=20)
    >>> schema.record_byte_size
    429
    >>> [entry.name for entry in schema.layout][:3]
    ['frame_idx', 'timestamp', 'latency']
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from operator import attrgetter
from typing import Any, Callable

import numpy as np

# 헤더 영역 고정 길이 (바이트). 쓰기/읽기 모두 FrameSchema.header_length를 사용합니다.
HEADER_LENGTH = 512

# 숫자 바이트 순서 (고정)
BYTE_ORDER = "little"


class Encoding(str, enum.Enum):
    """필드 값의 숫자 인코딩입니다."""
    INT32 = "int32"
    UINT8 = "uint8"
    FLOAT32 = "float32"
    FLOAT64 = "float64"


# 인코딩별 바이트 폭 (고정)
ENCODING_BYTE_WIDTHS: dict[Encoding, int] = {
    Encoding.INT32: 4,
    Encoding.UINT8: 1,
    Encoding.FLOAT32: 4,
    Encoding.FLOAT64: 8,
}

_BYTE_ORDER_CHARS = {"little": "<", "big": ">"}

# 지원하는 바이트 순서 값
BYTE_ORDERS = tuple(_BYTE_ORDER_CHARS)


def encoding_dtype(encoding: Encoding, byte_order: str = BYTE_ORDER) -> np.dtype:
    """인코딩과 바이트 순서에 대응하는 numpy dtype을 반환합니다."""
    return np.dtype(encoding.value).newbyteorder(_BYTE_ORDER_CHARS[byte_order])


@dataclass(frozen=True)
class FieldDescriptor:
    """
    프레임 필드 선언입니다.

    필드:
        name: 필드 이름 (Frame 속성 이름과 동일)
        encoding: 숫자 인코딩
        column_count: 컬럼 수. 마커 필드는 마커 1개당 컬럼 수
        is_marker_field: True이면 컬럼 수가 n_markers에 비례
    """
    name: str
    encoding: Encoding
    column_count: int = 1
    is_marker_field: bool = False

    @property
    def byte_width(self) -> int:
        """마커 필드가 아닌 경우의 바이트 폭 (마커 필드는 마커 1개 기준)"""
        return ENCODING_BYTE_WIDTHS[self.encoding] * self.column_count


# 기본(고정) 필드: 선언 순서가 곧 바이트 순서입니다.
BASIC_FIELDS: tuple[FieldDescriptor, ...] = (
    FieldDescriptor("frame_idx", Encoding.INT32),
    FieldDescriptor("timestamp", Encoding.FLOAT64),
    FieldDescriptor("latency", Encoding.FLOAT32),
    FieldDescriptor("pos", Encoding.FLOAT32, 3),
    FieldDescriptor("rot", Encoding.FLOAT32, 4),
    FieldDescriptor("pos_error", Encoding.FLOAT32),
    FieldDescriptor("tracked", Encoding.UINT8),
)

# 마커 필드: 항상 float32, 마커 1개당 1컬럼
MARKER_FIELDS: tuple[FieldDescriptor, ...] = (
    FieldDescriptor("mx", Encoding.FLOAT32, 1, True),
    FieldDescriptor("my", Encoding.FLOAT32, 1, True),
    FieldDescriptor("mz", Encoding.FLOAT32, 1, True),
    FieldDescriptor("msize", Encoding.FLOAT32, 1, True),
    FieldDescriptor("mres", Encoding.FLOAT32, 1, True),
)

BASIC_BYTES: int = sum(descriptor.byte_width for descriptor in BASIC_FIELDS)
MARKER_BYTES: int = sum(descriptor.byte_width for descriptor in MARKER_FIELDS)


@dataclass(frozen=True)
class FieldLayout:
    """
    레코드 내 단일 필드의 바이트 배치입니다.

    필드:
        name: 필드 이름
        encoding: 숫자 인코딩
        byte_offset: 레코드 시작 기준 오프셋
        byte_width: 레코드 내 차지하는 바이트 수
        column_count: 디코딩 시 컬럼 수 (마커 필드는 n_markers)
        is_marker_field: 마커 필드 여부
        dtype: 바이트 순서가 고정된 numpy dtype
        getter: Frame에서 값을 꺼내는 접근자 (스키마 생성 시 한 번 결정)
    """
    name: str
    encoding: Encoding
    byte_offset: int
    byte_width: int
    column_count: int
    is_marker_field: bool
    dtype: np.dtype = field(repr=False, compare=False)
    getter: Callable[[Any], Any] = field(repr=False, compare=False)

    @property
    def byte_end(self) -> int:
        return self.byte_offset + self.byte_width


def record_byte_size(n_markers: int) -> int:
    """
    마커 수에 따른 레코드 1개의 바이트 크기를 반환합니다.

    파라미터:
        n_markers: 마커 수 (0 이상)

    반환값:
        int: BASIC_BYTES + n_markers * MARKER_BYTES (= 29 + 20 * n_markers)
    """
    _check_n_markers(n_markers)
    return BASIC_BYTES + n_markers * MARKER_BYTES


def field_layout(n_markers: int, byte_order: str = BYTE_ORDER) -> list[FieldLayout]:
    """
    선언 순서대로 각 필드의 오프셋/폭/컬럼 수를 계산합니다.

    파라미터:
        n_markers: 마커 수 (0 이상)
        byte_order: 숫자 바이트 순서 ("little" | "big")

    반환값:
        list[FieldLayout]: 기본 필드 → 마커 필드 순서의 레이아웃
    """
    _check_n_markers(n_markers)

    layout: list[FieldLayout] = []
    offset = 0
    for descriptor in BASIC_FIELDS + MARKER_FIELDS:
        if descriptor.is_marker_field:
            column_count = descriptor.column_count * n_markers
        else:
            column_count = descriptor.column_count
        width = ENCODING_BYTE_WIDTHS[descriptor.encoding] * column_count

        layout.append(FieldLayout(
            name=descriptor.name,
            encoding=descriptor.encoding,
            byte_offset=offset,
            byte_width=width,
            column_count=column_count,
            is_marker_field=descriptor.is_marker_field,
            dtype=encoding_dtype(descriptor.encoding, byte_order),
            getter=attrgetter(descriptor.name),
        ))
        offset += width

    return layout


@dataclass(frozen=True)
class FrameSchema:
    """
    한 캡처 세션 동안 고정되는 프레임 레코드 스키마입니다.

    쓰기(LogFileWriter)와 읽기(load_log_file)가 같은 객체를 기준으로
    레코드 크기, 헤더 길이, 바이트 순서를 결정합니다.

    필드:
        n_markers: 설정된 마커 수
        header_length: 헤더 영역 고정 길이 (바이트)
        byte_order: 숫자 바이트 순서
    """
    n_markers: int = 0
    header_length: int = HEADER_LENGTH
    byte_order: str = BYTE_ORDER
    layout: tuple[FieldLayout, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.byte_order not in _BYTE_ORDER_CHARS:
            raise ValueError(
                f"byte_order는 {tuple(_BYTE_ORDER_CHARS)} 중 하나여야 합니다. "
                f"입력값: '{self.byte_order}'"
            )
        if self.header_length <= 0:
            raise ValueError(f"header_length는 양수여야 합니다. 입력값: {self.header_length}")
        # frozen 데이터클래스이므로 object.__setattr__로 캐시 필드 설정
        object.__setattr__(
            self, "layout", tuple(field_layout(self.n_markers, self.byte_order))
        )

    @property
    def record_byte_size(self) -> int:
        return record_byte_size(self.n_markers)

    @property
    def basic_byte_size(self) -> int:
        return BASIC_BYTES

    @property
    def marker_byte_size(self) -> int:
        """마커 1개가 레코드에 추가하는 바이트 수"""
        return MARKER_BYTES

    @property
    def basic_layout(self) -> tuple[FieldLayout, ...]:
        return tuple(entry for entry in self.layout if not entry.is_marker_field)

    @property
    def marker_layout(self) -> tuple[FieldLayout, ...]:
        return tuple(entry for entry in self.layout if entry.is_marker_field)

    def field_layout(self) -> list[FieldLayout]:
        """레이아웃 목록의 사본을 반환합니다."""
        return list(self.layout)


def _check_n_markers(n_markers: int) -> None:
    if n_markers < 0:
        raise ValueError(f"n_markers는 0 이상이어야 합니다. 입력값: {n_markers}")
