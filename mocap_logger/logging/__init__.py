"""
구조화 로깅 패키지

StructuredLogger를 외부에서 임포트하기 위한 패키지 초기화입니다.
"""

from mocap_logger.logging.structured_logger import (
    StructuredLogger,
    create_session_handler,
    setup_logging,
)

__all__ = ["StructuredLogger", "create_session_handler", "setup_logging"]
