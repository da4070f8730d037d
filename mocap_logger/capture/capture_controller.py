"""
캡처 컨트롤러 모듈입니다.

역할:
- 프레임 소스를 고정 주기로 폴링하여 새 프레임을 .mtv 로그 파일에 append
- 생명주기 상태 머신: idle → started ⇄ paused → finished (종료 상태)
- 획득 카운터(frames_acquired, first_frame_idx) 관리
- 프레임마다 구독자 콜백을 등록 순서대로 동기 호출
- 세션 종료 시 헤더 확정, 파일 크기 검증, 세션 요약(JSON) 저장

폴링 사이클 (겹치지 않음):
    get_frame() → encode() → append() → 카운터 증가 → 구독자 통보 → sleep(poll_interval)

에러 처리:
- 프레임 소스 오류: SourceFetchError로 구독자에게 통보하고 폴링 계속
- 파일 쓰기 오류: 세션 치명 오류, 즉시 finished(failed=True)로 전환

사용 예시:
    >>> controller = CaptureController(config)
    >>> controller.subscribe(lambda event: print(event.frames_acquired))
    >>> await controller.start()
    >>> await asyncio.sleep(1.0)
    >>> await controller.finish()
    >>> data = load_log_file(controller.get_files()["data"])
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from mocap_logger.capture import (
    CaptureStateError,
    Frame,
    FrameSource,
    SourceFetchError,
)
from mocap_logger.config.schema import AppConfig
from mocap_logger.format import MtvError, StreamWriteError, TruncatedRecordError
from mocap_logger.format.field_schema import FrameSchema
from mocap_logger.format.frame_codec import FrameCodec
from mocap_logger.format.log_file import LogFileWriter
from mocap_logger.logging.structured_logger import StructuredLogger, create_session_handler

logger = logging.getLogger(__name__)

# 세션 로그 핸들러를 부착할 패키지 로거 이름
_PACKAGE_LOGGER_NAME = "mocap_logger"

# 출력 파일 종류별 확장자
_FILE_SUFFIXES = {
    "data": ".mtv",
    "meta": ".json",
    "log": ".log",
}

# 최종 헤더에서 길이가 늘어나는 카운터의 최대값 (open() 시 헤더 공간 확인용)
_FINAL_HEADER_RESERVE = {
    "frames_acquired": 2**64 - 1,
    "first_frame_idx": -2**31,
}


class CaptureState(str, enum.Enum):
    """캡처 생명주기 상태입니다."""
    IDLE = "idle"
    STARTED = "started"
    PAUSED = "paused"
    FINISHED = "finished"


@dataclass(frozen=True)
class FrameEvent:
    """
    구독자에게 전달되는 프레임 통보입니다 (읽기 전용).

    필드:
        frame: 방금 기록한 프레임 (오류 통보 시 None일 수 있음)
        record: 파일에 append한 레코드 바이트 (오류 통보 시 None)
        frames_acquired: 통보 시점의 누적 획득 프레임 수
        error: SourceFetchError 또는 StreamWriteError (정상 프레임이면 None)
    """
    frame: Optional[Frame]
    record: Optional[bytes]
    frames_acquired: int
    error: Optional[Exception] = None


# 프레임 통보 콜백 타입: (FrameEvent) -> None
FrameCallback = Callable[[FrameEvent], None]


@dataclass
class CaptureSession:
    """
    start()부터 finish()까지 한 번의 캡처 세션 상태입니다.

    필드:
        session_id: 세션 식별자
        writer: 출력 로그 파일 (세션이 독점)
        files: 출력 파일 경로 (data, meta, log)
        frames_acquired: 기록한 프레임 수
        first_frame_idx: 세션 첫 프레임의 소스 프레임 번호
        last_frame_idx: 마지막으로 기록한 프레임 번호
        fetch_failures: 프레임 소스 오류 횟수
        duplicate_frames: 건너뛴 중복 프레임 수
        error: 세션을 종료시킨 치명 오류
    """
    session_id: str
    writer: LogFileWriter
    files: dict[str, Path]
    log_handler: Optional[logging.Handler] = None
    frames_acquired: int = 0
    first_frame_idx: Optional[int] = None
    last_frame_idx: Optional[int] = None
    fetch_failures: int = 0
    duplicate_frames: int = 0
    started_at: str = ""
    finished_at: str = ""
    error: Optional[Exception] = None

    def summary(self) -> dict:
        """세션 요약 딕셔너리를 반환합니다 (JSON 직렬화 가능)."""
        return {
            "session_id": self.session_id,
            "frames_acquired": self.frames_acquired,
            "first_frame_idx": self.first_frame_idx,
            "last_frame_idx": self.last_frame_idx,
            "fetch_failures": self.fetch_failures,
            "duplicate_frames": self.duplicate_frames,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": None if self.error is None else str(self.error),
            "files": {name: str(path) for name, path in self.files.items()},
        }


class CaptureController:
    """
    프레임 소스 폴링과 로그 파일 기록을 관리하는 상태 머신입니다.

    모든 생명주기 메서드(start/pause/finish)는 폴링 태스크와 같은
    asyncio 이벤트 루프에서 호출해야 합니다. 폴링 사이클은 하나의 태스크에서
    순차 실행되므로 겹치지 않으며, 별도의 락이 필요 없습니다.

    구독자 콜백 안에서 생명주기 메서드를 호출하면 CaptureStateError가 발생합니다.
    """

    def __init__(
        self,
        config: AppConfig,
        source: Optional[FrameSource] = None,
    ) -> None:
        """
        CaptureController를 초기화합니다.

        파라미터:
            config: 전체 애플리케이션 설정 객체
            source: 프레임 소스. None이면 config.capture.source에 따라 생성
        """
        self._config = config
        self._source: FrameSource = source if source is not None else create_frame_source(config)

        self._schema = FrameSchema(n_markers=config.capture.n_markers)
        self._codec = FrameCodec(self._schema)
        self._poll_interval_sec: float = config.capture.poll_interval_ms / 1000.0
        self._skip_duplicates: bool = config.capture.skip_duplicate_frames
        self._files: dict[str, Path] = _resolve_output_files(config)

        self._state: CaptureState = CaptureState.IDLE
        self._session: Optional[CaptureSession] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._subscribers: list[FrameCallback] = []
        self._current_frame: Optional[Frame] = None
        self._notifying: bool = False

        logger.info(
            f"CaptureController 초기화: "
            f"source={type(self._source).__name__}, "
            f"n_markers={self._schema.n_markers}, "
            f"record_bytes={self._schema.record_byte_size}, "
            f"poll_interval={config.capture.poll_interval_ms}ms, "
            f"data={self._files['data']}"
        )

    # =========================================================================
    # 읽기 전용 속성
    # =========================================================================

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def schema(self) -> FrameSchema:
        return self._schema

    @property
    def n_markers(self) -> int:
        return self._schema.n_markers

    @property
    def record_byte_size(self) -> int:
        """프레임 1개의 레코드 바이트 크기 (29 + 20 * n_markers)"""
        return self._schema.record_byte_size

    @property
    def frames_acquired(self) -> int:
        return 0 if self._session is None else self._session.frames_acquired

    @property
    def first_frame_idx(self) -> Optional[int]:
        return None if self._session is None else self._session.first_frame_idx

    @property
    def current_frame(self) -> Optional[Frame]:
        """마지막으로 기록한 프레임"""
        return self._current_frame

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def error(self) -> Optional[Exception]:
        return None if self._session is None else self._session.error

    @property
    def failed(self) -> bool:
        """세션이 치명 오류로 종료되었는지 여부"""
        return self.error is not None

    def get_files(self) -> dict[str, Path]:
        """출력 파일 경로(data, meta, log)를 반환합니다."""
        return dict(self._files)

    def current_frame_to_bytes(self) -> bytes:
        """
        마지막으로 기록한 프레임의 레코드 바이트를 반환합니다.

        에러:
            CaptureStateError: 아직 기록한 프레임이 없을 때
        """
        if self._current_frame is None:
            raise CaptureStateError("아직 기록한 프레임이 없습니다")
        return self._codec.encode(self._current_frame)

    # =========================================================================
    # 구독자 관리
    # =========================================================================

    def subscribe(self, callback: FrameCallback) -> None:
        """
        프레임마다 호출될 콜백을 등록합니다.

        콜백은 등록 순서대로, 다음 폴링 전에 동기적으로 호출됩니다.
        """
        self._subscribers.append(callback)
        logger.debug(f"프레임 구독자 등록 완료 (총 {len(self._subscribers)}개)")

    def unsubscribe(self, callback: FrameCallback) -> None:
        """등록된 콜백을 제거합니다."""
        try:
            self._subscribers.remove(callback)
            logger.debug(f"프레임 구독자 제거 완료 (남은 구독자: {len(self._subscribers)}개)")
        except ValueError:
            logger.warning("제거할 구독자를 찾을 수 없습니다")

    # =========================================================================
    # 생명주기
    # =========================================================================

    async def start(self) -> None:
        """
        캡처를 시작하거나 일시정지에서 재개합니다.

        - idle: 세션을 열고(파일 생성, 헤더 기록, 소스 시작) 폴링 시작
        - paused: 같은 파일에 이어서 폴링 재개
        - started: 아무 동작 없음

        에러:
            CaptureStateError: finished 상태이거나 구독자 콜백 안에서 호출 시
            StreamWriteError: 출력 파일 생성 실패 시
        """
        self._check_not_notifying("start")

        if self._state is CaptureState.FINISHED:
            raise CaptureStateError("종료된 캡처는 다시 시작할 수 없습니다")

        if self._state is CaptureState.STARTED:
            logger.warning("CaptureController가 이미 실행 중입니다")
            return

        if self._state is CaptureState.IDLE:
            await self._open_session()

        self._state = CaptureState.STARTED
        self._poll_task = asyncio.create_task(self._poll_loop(), name="mtv_poll_loop")
        logger.info(f"캡처 시작: frames_acquired={self.frames_acquired}")

    async def pause(self) -> None:
        """
        폴링을 멈춥니다. 출력 파일은 열린 상태로 유지됩니다.

        started 상태가 아니면 아무 동작도 하지 않습니다.
        """
        self._check_not_notifying("pause")

        if self._state is not CaptureState.STARTED:
            logger.debug(f"pause() 무시: 현재 상태={self._state.value}")
            return

        await self._stop_poll_task()
        self._state = CaptureState.PAUSED
        logger.info(f"캡처 일시정지: frames_acquired={self.frames_acquired}")

    async def finish(self) -> None:
        """
        폴링을 멈추고 세션을 닫습니다 (종료 상태).

        헤더를 최종 카운터로 다시 쓰고 flush/fsync 후 파일을 닫습니다.
        두 번째 호출부터는 아무 동작도 하지 않습니다.
        """
        self._check_not_notifying("finish")

        if self._state is CaptureState.FINISHED:
            return

        await self._stop_poll_task()
        try:
            if self._session is not None:
                await self._close_session()
        finally:
            self._state = CaptureState.FINISHED
        logger.info(f"캡처 종료: frames_acquired={self.frames_acquired}")

    def delete_files(self) -> None:
        """
        세션이 만든 출력 파일을 삭제합니다.

        에러:
            CaptureStateError: 세션이 열려 있을 때 (started/paused)
        """
        if self._state in (CaptureState.STARTED, CaptureState.PAUSED):
            raise CaptureStateError("캡처 중에는 파일을 삭제할 수 없습니다. finish()를 먼저 호출하세요.")

        for name, path in self._files.items():
            if path.exists():
                path.unlink()
                logger.info(f"출력 파일 삭제: {name}={path}")

    # =========================================================================
    # 폴링
    # =========================================================================

    async def _poll_loop(self) -> None:
        """폴링 태스크 본체입니다. 다음 폴링은 현재 사이클 완료 후 예약됩니다."""
        logger.debug("폴링 루프 시작")
        while True:
            await self._poll_once()
            if self._state is not CaptureState.STARTED:
                return
            await asyncio.sleep(self._poll_interval_sec)

    async def _poll_once(self) -> None:
        """
        폴링 사이클 1회: 프레임 가져오기 → 인코딩 → append → 통보
        """
        session = self._session

        try:
            frame = await self._source.get_frame()
        except Exception as exc:
            if isinstance(exc, SourceFetchError):
                fetch_error = exc
            else:
                fetch_error = SourceFetchError(f"프레임 소스 오류: {exc}")
                fetch_error.__cause__ = exc
            session.fetch_failures += 1
            logger.warning(
                f"프레임 가져오기 실패 ({session.fetch_failures}회): {fetch_error}"
            )
            self._notify(FrameEvent(
                frame=None,
                record=None,
                frames_acquired=session.frames_acquired,
                error=fetch_error,
            ))
            return

        # 새 프레임 없음
        if frame is None:
            return

        frame_idx = int(frame.frame_idx)
        if self._skip_duplicates and frame_idx == session.last_frame_idx:
            session.duplicate_frames += 1
            return

        try:
            record = self._codec.encode(frame)
            session.writer.append(record)
        except MtvError as exc:
            self._fail_session(exc, frame)
            return

        if session.first_frame_idx is None:
            session.first_frame_idx = frame_idx
            logger.info(f"첫 프레임 수신: frame_idx={frame_idx}")
        session.last_frame_idx = frame_idx
        session.frames_acquired += 1
        self._current_frame = frame

        if session.frames_acquired % 1000 == 0:
            logger.debug(f"프레임 {session.frames_acquired}개 기록 완료")

        self._notify(FrameEvent(
            frame=frame,
            record=record,
            frames_acquired=session.frames_acquired,
        ))

    def _notify(self, event: FrameEvent) -> None:
        """
        등록된 구독자에게 등록 순서대로 통보합니다.

        개별 구독자 에러는 기록만 하고 다른 구독자 통보는 계속합니다.
        """
        self._notifying = True
        try:
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except CaptureStateError as exc:
                    logger.error(f"구독자 콜백에서 생명주기 메서드 호출: {exc}")
                except Exception as callback_error:
                    logger.error(
                        f"구독자 콜백 실행 중 에러: {callback_error}",
                        exc_info=True,
                    )
        finally:
            self._notifying = False

    def _fail_session(self, exc: Exception, frame: Optional[Frame]) -> None:
        """
        쓰기/인코딩 실패로 세션을 즉시 종료합니다 (폴링 태스크 안에서 호출).

        파일은 헤더를 다시 쓰지 않고 닫으며, 이후 쓰기는 일어나지 않습니다.
        """
        session = self._session
        session.error = exc
        self._state = CaptureState.FINISHED
        self._poll_task = None
        logger.error(
            f"캡처 세션 치명 오류, 세션 종료: {exc} "
            f"(frames_acquired={session.frames_acquired})"
        )

        session.writer.abort()
        session.finished_at = _now_iso()
        self._write_summary(session)
        self._detach_session_handler(session)

        self._notify(FrameEvent(
            frame=frame,
            record=None,
            frames_acquired=session.frames_acquired,
            error=exc,
        ))

    async def _stop_poll_task(self) -> None:
        """폴링 태스크를 취소하고 종료를 대기합니다."""
        task = self._poll_task
        self._poll_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("폴링 태스크 종료")

    # =========================================================================
    # 세션 열기/닫기
    # =========================================================================

    async def _open_session(self) -> None:
        """프레임 소스를 시작하고 출력 파일과 세션 로그를 엽니다."""
        session_id = (
            self._config.system.session_id
            or StructuredLogger.get_session_id()
            or uuid.uuid4().hex[:8]
        )

        await self._source.start()

        session = CaptureSession(
            session_id=session_id,
            writer=LogFileWriter(self._files["data"], self._schema),
            files=dict(self._files),
            started_at=_now_iso(),
        )

        try:
            session.log_handler = create_session_handler(
                self._files["log"], session_id, self._config.system.log_format
            )
        except OSError as exc:
            await self._source.stop()
            raise StreamWriteError(
                f"세션 로그 파일 열기 실패: {self._files['log']}, 오류: {exc}"
            ) from exc
        logging.getLogger(_PACKAGE_LOGGER_NAME).addHandler(session.log_handler)

        try:
            session.writer.open(
                self._header_metadata(session, status="recording"),
                reserved=_FINAL_HEADER_RESERVE,
            )
        except StreamWriteError:
            self._detach_session_handler(session)
            await self._source.stop()
            raise

        self._session = session
        logger.info(
            f"캡처 세션 열기: session_id={session_id}, "
            f"data={self._files['data']}"
        )

    async def _close_session(self) -> None:
        """소스를 멈추고 헤더를 확정한 뒤 파일을 닫고 검증합니다."""
        session = self._session

        try:
            await self._source.stop()
        except Exception as exc:
            logger.warning(f"프레임 소스 중지 오류 (무시): {exc}", exc_info=True)

        session.finished_at = _now_iso()
        try:
            try:
                session.writer.finalize(self._header_metadata(session, status="complete"))
            except StreamWriteError as exc:
                logger.error(f"로그 파일 마무리 실패: {exc}")
                session.error = exc
            else:
                self._validate_data_file(session)

            self._write_summary(session)
        finally:
            self._detach_session_handler(session)

    def _validate_data_file(self, session: CaptureSession) -> None:
        """닫힌 데이터 파일 크기가 헤더 + 레코드 수 × 레코드 크기와 같은지 확인합니다."""
        data_path = session.files["data"]
        expected_size = (
            self._schema.header_length
            + session.frames_acquired * self._schema.record_byte_size
        )
        actual_size = data_path.stat().st_size
        if actual_size != expected_size:
            session.error = TruncatedRecordError(
                f"데이터 파일 크기 불일치: 예상={expected_size}바이트, "
                f"실제={actual_size}바이트 ({data_path})"
            )
            logger.error(str(session.error))
        else:
            logger.debug(f"데이터 파일 검증 완료: {actual_size}바이트")

    def _header_metadata(self, session: CaptureSession, status: str) -> dict:
        return {
            "session_id": session.session_id,
            "created": session.started_at,
            "source": self._config.capture.source,
            "poll_interval_ms": self._config.capture.poll_interval_ms,
            "status": status,
            "frames_acquired": session.frames_acquired,
            "first_frame_idx": session.first_frame_idx,
        }

    def _write_summary(self, session: CaptureSession) -> None:
        """세션 요약을 meta(JSON) 파일로 저장합니다."""
        summary = session.summary()
        summary.update({
            "n_markers": self._schema.n_markers,
            "record_bytes": self._schema.record_byte_size,
            "header_length": self._schema.header_length,
            "byte_order": self._schema.byte_order,
            "status": "error" if session.error is not None else "complete",
        })
        meta_path = session.files["meta"]
        try:
            with open(meta_path, "w", encoding="utf-8") as meta_file:
                json.dump(summary, meta_file, ensure_ascii=False, indent=2)
            logger.info(f"세션 요약 저장 완료: {meta_path}")
        except OSError as exc:
            logger.error(f"세션 요약 저장 실패: {meta_path}, 오류: {exc}")

    def _detach_session_handler(self, session: CaptureSession) -> None:
        handler = session.log_handler
        if handler is None:
            return
        logging.getLogger(_PACKAGE_LOGGER_NAME).removeHandler(handler)
        handler.close()
        session.log_handler = None

    def _check_not_notifying(self, method_name: str) -> None:
        if self._notifying:
            raise CaptureStateError(
                f"구독자 콜백 안에서는 {method_name}()를 호출할 수 없습니다"
            )


# =============================================================================
# 모듈 레벨 헬퍼 함수
# =============================================================================

def create_frame_source(config: AppConfig) -> FrameSource:
    """설정에 따라 적절한 프레임 소스를 생성합니다."""
    if config.capture.source == "replay":
        from mocap_logger.capture.replay_source import ReplayFrameSource
        return ReplayFrameSource(config)
    else:
        from mocap_logger.capture.simulated_source import SimulatedFrameSource
        return SimulatedFrameSource(config)


def _resolve_output_files(config: AppConfig) -> dict[str, Path]:
    """출력 디렉토리와 파일 이름으로 data/meta/log 파일 경로를 만듭니다."""
    output_dir = Path(config.capture.output_dir)
    base_name = config.capture.file_name or f"capture_{datetime.now():%Y%m%d_%H%M%S}"
    return {
        name: output_dir / f"{base_name}{suffix}"
        for name, suffix in _FILE_SUFFIXES.items()
    }


def _now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")
