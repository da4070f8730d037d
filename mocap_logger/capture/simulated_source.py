"""
시뮬레이션 프레임 소스 모듈입니다.

역할:
- 트래킹 서버 없이 난수 기반 Frame 생성
- 프레임 번호는 start_frame_idx부터 1씩 증가, timestamp = frame_idx / frame_rate
- 강체 회전은 정규화된 쿼터니언, 마커는 marker_dropout 확률로 가림(NaN) 처리
- seed 설정으로 재현 가능한 데이터 생성

사용 예시:
    >>> source = SimulatedFrameSource(config)
    >>> await source.start()
    >>> frame = await source.get_frame()
    >>> await source.stop()
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from mocap_logger.capture import Frame
from mocap_logger.config.schema import AppConfig

# 모듈 로거
logger = logging.getLogger(__name__)

# 시뮬레이션 작업 공간 크기 (미터, 원점 중심 정육면체 한 변의 절반)
_WORKSPACE_HALF_SIZE = 1.0


class SimulatedFrameSource:
    """
    난수 기반으로 모션캡처 프레임을 생성하는 프레임 소스입니다.

    get_frame()은 호출될 때마다 즉시 새 프레임을 반환합니다.
    """

    def __init__(self, config: AppConfig) -> None:
        """
        SimulatedFrameSource를 초기화합니다.

        파라미터:
            config (AppConfig): 전체 애플리케이션 설정 객체
        """
        simulate = config.capture.simulate
        self._n_markers = config.capture.n_markers
        self._frame_rate = simulate.frame_rate
        self._start_frame_idx = simulate.start_frame_idx
        self._marker_dropout = simulate.marker_dropout
        self._seed = simulate.seed

        self._rng = np.random.default_rng(self._seed)
        self._next_frame_idx = self._start_frame_idx
        self._running = False

        logger.info(
            f"SimulatedFrameSource 초기화 완료: "
            f"n_markers={self._n_markers}, "
            f"frame_rate={self._frame_rate}Hz, "
            f"seed={self._seed}"
        )

    # =========================================================================
    # 공개 인터페이스
    # =========================================================================

    async def start(self) -> None:
        if self._running:
            logger.warning("SimulatedFrameSource가 이미 실행 중입니다")
            return
        self._running = True
        logger.info(f"SimulatedFrameSource 시작: 첫 프레임 번호={self._next_frame_idx}")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        logger.info(
            f"SimulatedFrameSource 중지: "
            f"마지막 프레임 번호={self._next_frame_idx - 1}"
        )

    async def get_frame(self) -> Optional[Frame]:
        """
        다음 프레임을 생성합니다.

        반환값:
            Frame: 새 프레임. start() 이전 또는 stop() 이후에는 None
        """
        if not self._running:
            return None

        frame = self._generate_frame(self._next_frame_idx)
        self._next_frame_idx += 1
        return frame

    # =========================================================================
    # 내부 헬퍼 메서드
    # =========================================================================

    def _generate_frame(self, frame_idx: int) -> Frame:
        rng = self._rng

        rotation = rng.normal(size=4)
        rotation /= np.linalg.norm(rotation)

        n = self._n_markers
        marker_xyz = rng.uniform(-_WORKSPACE_HALF_SIZE, _WORKSPACE_HALF_SIZE, size=(3, n))
        marker_size = rng.uniform(0.005, 0.02, size=n)
        marker_residual = rng.uniform(0.0, 0.002, size=n)

        # 가려진 마커: 좌표 NaN, 크기/잔차 0
        occluded = rng.random(n) < self._marker_dropout
        marker_xyz[:, occluded] = np.nan
        marker_size[occluded] = 0.0
        marker_residual[occluded] = 0.0

        return Frame(
            frame_idx=frame_idx,
            timestamp=frame_idx / self._frame_rate,
            latency=rng.uniform(0.001, 0.01),
            pos=rng.uniform(-_WORKSPACE_HALF_SIZE, _WORKSPACE_HALF_SIZE, size=3),
            rot=rotation,
            pos_error=rng.uniform(0.0, 0.001),
            tracked=rng.random() > 0.05,
            mx=marker_xyz[0],
            my=marker_xyz[1],
            mz=marker_xyz[2],
            msize=marker_size,
            mres=marker_residual,
        )
