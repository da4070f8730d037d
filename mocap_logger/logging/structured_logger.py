"""
구조화 JSON 로깅 모듈입니다.

역할:
- python-json-logger를 사용한 JSON 포맷 로그 출력
- RotatingFileHandler로 로그 파일 자동 순환 (10MB, 5개 보존)
- session_id, module, level 등 공통 필드 자동 추가
- 캡처 세션별 .log 파일 핸들러 생성
- 로그 레벨 및 포맷(json/text)을 설정에서 제어

사용 예시:
    >>> setup_logging(config)
    >>> logger = StructuredLogger.get("my_module")
    >>> logger.info("캡처 시작", extra={"frame_idx": 100})
"""

from __future__ import annotations

import logging
import logging.handlers
import uuid
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from mocap_logger.config.schema import AppConfig

_SESSION_ID: str = ""


def setup_logging(config: AppConfig, session_id: Optional[str] = None) -> None:
    """
    애플리케이션 전체 로깅 설정을 초기화합니다.

    파라미터:
        config: AppConfig 인스턴스
        session_id: 세션 식별자. None이면 config.system.session_id 또는 UUID 사용
    """
    global _SESSION_ID

    _SESSION_ID = (
        session_id
        or config.system.session_id
        or str(uuid.uuid4())
    )

    log_level = getattr(logging, config.system.log_level, logging.INFO)
    log_format = config.system.log_format
    log_dir = Path(config.system.log_dir)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # 기존 핸들러 제거 (중복 방지)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers: list[logging.Handler] = []

    # 콘솔 핸들러
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    handlers.append(console_handler)

    # 파일 핸들러 (RotatingFileHandler: 10MB, 5개 보존)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_filepath = log_dir / "app.log"
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_filepath,
            maxBytes=10 * 1024 * 1024,   # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        handlers.append(file_handler)
    except OSError as exc:
        logging.warning(f"로그 파일 핸들러 생성 실패: {exc}")

    for handler in handlers:
        handler.setFormatter(_make_formatter(log_format, _SESSION_ID))
        root_logger.addHandler(handler)

    logging.getLogger(__name__).info(
        f"로깅 초기화: level={config.system.log_level}, "
        f"format={log_format}, session={_SESSION_ID}"
    )


def create_session_handler(
    filepath: str | Path,
    session_id: str,
    log_format: str = "json",
    level: int = logging.DEBUG,
) -> logging.FileHandler:
    """
    캡처 세션 전용 로그 파일 핸들러를 생성합니다.

    세션 동안 패키지 로거에 부착되어 해당 세션의 로그만 .log 파일에 남깁니다.
    호출자가 세션 종료 시 핸들러를 제거하고 close() 해야 합니다.

    파라미터:
        filepath: 로그 파일 경로
        session_id: 세션 식별자 (각 로그 레코드에 포함)
        log_format: "json" | "text"
        level: 핸들러 로그 레벨

    반환값:
        logging.FileHandler: 포맷터가 설정된 파일 핸들러
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(filepath, mode="w", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(_make_formatter(log_format, session_id))
    return handler


def _make_formatter(log_format: str, session_id: str) -> logging.Formatter:
    if log_format == "json":
        return _JsonFormatter(session_id=session_id)
    return _TextFormatter(session_id=session_id)


class _JsonFormatter(jsonlogger.JsonFormatter):
    """
    session_id, module 필드를 자동 추가하는 JSON 포맷터입니다.
    """

    def __init__(self, session_id: str = "") -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        self._session_id = session_id

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["session_id"] = self._session_id
        log_record["module"] = record.name
        log_record["level"] = record.levelname


class _TextFormatter(logging.Formatter):
    """
    session_id를 접두어로 포함하는 텍스트 포맷터입니다.
    """

    def __init__(self, session_id: str = "") -> None:
        super().__init__(
            fmt=f"%(asctime)s [{session_id[:8] if session_id else 'no-sid'}] "
                f"%(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class StructuredLogger:
    """
    모듈별 구조화 로거를 반환하는 팩토리 클래스입니다.

    표준 logging.Logger를 그대로 반환하여 기존 logging API와 완전히 호환됩니다.
    """

    @staticmethod
    def get(name: str) -> logging.Logger:
        """지정된 이름의 로거를 반환합니다 (일반적으로 __name__ 사용)."""
        return logging.getLogger(name)

    @staticmethod
    def get_session_id() -> str:
        """현재 세션 ID를 반환합니다."""
        return _SESSION_ID
