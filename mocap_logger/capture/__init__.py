"""
캡처 모듈 패키지

공통 데이터 타입 정의:
- Frame: 모션캡처 프레임 1개 (강체 포즈 + 라벨링된 마커)
- FrameSource: 프레임 소스 인터페이스 (시뮬레이션/재생/실제 서버)
- CaptureError 계열 에러
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import numpy as np


def _float32_row(values) -> np.ndarray:
    return np.asarray(values, dtype=np.float32).reshape(-1)


def _empty_markers() -> np.ndarray:
    return np.zeros(0, dtype=np.float32)


@dataclass(frozen=True)
class Frame:
    """
    모션캡처 프레임 데이터 컨테이너입니다.

    생성 시 모든 값을 저장 인코딩의 dtype으로 변환하므로,
    메모리 상의 값과 파일에서 디코딩한 값이 비트 단위로 일치합니다.

    필드:
        frame_idx: 트래킹 서버 프레임 번호 (int32)
        timestamp: 서버 기준 프레임 시각 (float64, 초)
        latency: 프레임 지연시간 (float32)
        pos: 강체 위치 [x, y, z] (float32 × 3)
        rot: 강체 회전 쿼터니언 [qx, qy, qz, qw] (float32 × 4)
        pos_error: 강체 평균 위치 오차 (float32)
        tracked: 강체 트래킹 성공 여부 (uint8, 1=성공 0=실패)
        mx, my, mz: 라벨링된 마커 좌표 (float32 × n_markers)
        msize: 마커 크기 (float32 × n_markers)
        mres: 마커 잔차 (float32 × n_markers)
    """
    frame_idx: int
    timestamp: float
    latency: float
    pos: np.ndarray
    rot: np.ndarray
    pos_error: float
    tracked: int
    mx: np.ndarray = field(default_factory=_empty_markers)
    my: np.ndarray = field(default_factory=_empty_markers)
    mz: np.ndarray = field(default_factory=_empty_markers)
    msize: np.ndarray = field(default_factory=_empty_markers)
    mres: np.ndarray = field(default_factory=_empty_markers)

    def __post_init__(self) -> None:
        # frozen 데이터클래스이므로 object.__setattr__로 정규화 값 설정
        setter = object.__setattr__
        setter(self, "frame_idx", np.int32(self.frame_idx))
        setter(self, "timestamp", np.float64(self.timestamp))
        setter(self, "latency", np.float32(self.latency))
        setter(self, "pos", _float32_row(self.pos))
        setter(self, "rot", _float32_row(self.rot))
        setter(self, "pos_error", np.float32(self.pos_error))
        setter(self, "tracked", np.uint8(1 if self.tracked else 0))
        setter(self, "mx", _float32_row(self.mx))
        setter(self, "my", _float32_row(self.my))
        setter(self, "mz", _float32_row(self.mz))
        setter(self, "msize", _float32_row(self.msize))
        setter(self, "mres", _float32_row(self.mres))

        if self.pos.size != 3:
            raise ValueError(f"pos는 3개 값이어야 합니다. 입력 크기: {self.pos.size}")
        if self.rot.size != 4:
            raise ValueError(f"rot는 4개 값(쿼터니언)이어야 합니다. 입력 크기: {self.rot.size}")

    @property
    def n_markers(self) -> int:
        """마커 배열 길이 (mx 기준)"""
        return int(self.mx.size)


class FrameSource(Protocol):
    """
    프레임 소스 인터페이스입니다.

    get_frame()은 블로킹 없이 즉시 반환해야 합니다.
    새 프레임이 없으면 None을 반환합니다.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def get_frame(self) -> Optional[Frame]: ...


class CaptureError(Exception):
    """캡처 처리 중 발생하는 에러의 기본 클래스입니다."""
    pass


class SourceFetchError(CaptureError):
    """프레임 소스에서 프레임을 가져오지 못했을 때 발생하는 에러입니다 (일시적)."""
    pass


class CaptureStateError(CaptureError):
    """현재 상태에서 허용되지 않는 생명주기 전환 시 발생하는 에러입니다."""
    pass
