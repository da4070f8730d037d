"""
로그 파일 재생 프레임 소스 모듈입니다.

역할:
- 기존 .mtv 로그 파일을 로드하여 기록된 순서대로 Frame 재생
- loop=True이면 파일 끝에서 처음으로 되돌아가 반복
- loop=False이면 파일 끝 이후 "새 프레임 없음"(None) 반환

사용 예시:
    >>> source = ReplayFrameSource(config)
    >>> await source.start()
    >>> frame = await source.get_frame()
    >>> await source.stop()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from mocap_logger.capture import Frame
from mocap_logger.config.schema import AppConfig
from mocap_logger.format import SchemaMismatchError
from mocap_logger.format.frame_codec import CaptureData
from mocap_logger.format.log_file import load_log_file

# 모듈 로거
logger = logging.getLogger(__name__)


class ReplayFrameSource:
    """
    .mtv 로그 파일을 프레임 소스로 재생하는 클래스입니다.

    파일은 start() 시 한 번 로드하며, 재생할 파일의 마커 수는
    capture.n_markers와 같아야 합니다.
    """

    def __init__(self, config: AppConfig) -> None:
        """
        ReplayFrameSource를 초기화합니다.

        파라미터:
            config (AppConfig): 전체 애플리케이션 설정 객체
        """
        self._path = Path(config.capture.replay.path)
        self._loop_enabled = config.capture.replay.loop
        self._n_markers = config.capture.n_markers

        self._data: Optional[CaptureData] = None
        self._position: int = 0
        self._running: bool = False

        logger.info(
            f"ReplayFrameSource 초기화 완료: "
            f"path={self._path}, loop={self._loop_enabled}"
        )

    @property
    def n_frames(self) -> int:
        """로드된 프레임 수 (start() 전에는 0)"""
        return 0 if self._data is None else self._data.n_frames

    async def start(self) -> None:
        """
        재생할 로그 파일을 로드합니다.

        에러:
            LogFileNotFoundError: 파일이 없을 때
            SchemaMismatchError: 파일 마커 수가 설정과 다를 때
        """
        if self._running:
            logger.warning("ReplayFrameSource가 이미 실행 중입니다")
            return

        if self._data is None:
            data = load_log_file(self._path)
            if data.n_markers != self._n_markers:
                raise SchemaMismatchError(
                    f"재생 파일 마커 수({data.n_markers})가 "
                    f"설정 n_markers({self._n_markers})와 다릅니다: {self._path}"
                )
            self._data = data

        self._running = True
        logger.info(f"ReplayFrameSource 시작: {self.n_frames}개 프레임")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        logger.info(f"ReplayFrameSource 중지: 위치={self._position}/{self.n_frames}")

    async def get_frame(self) -> Optional[Frame]:
        """
        다음 기록 프레임을 반환합니다.

        반환값:
            Frame | None: 재생할 프레임이 없으면 None
        """
        if not self._running or self.n_frames == 0:
            return None

        if self._position >= self.n_frames:
            if not self._loop_enabled:
                return None
            logger.debug("로그 파일 반복 재생 시작")
            self._position = 0

        frame = self._frame_at(self._position)
        self._position += 1
        return frame

    def _frame_at(self, row: int) -> Frame:
        data = self._data
        return Frame(
            frame_idx=data.frame_idx[row, 0],
            timestamp=data.timestamp[row, 0],
            latency=data.latency[row, 0],
            pos=data.pos[row],
            rot=data.rot[row],
            pos_error=data.pos_error[row, 0],
            tracked=data.tracked[row, 0],
            mx=data.mx[row],
            my=data.my[row],
            mz=data.mz[row],
            msize=data.msize[row],
            mres=data.mres[row],
        )
