"""
mocap-logger 설정 스키마 정의 모듈입니다.

역할:
- Pydantic v2 BaseModel 기반으로 config.yaml의 전체 구조를 타입 안전하게 정의
- 각 섹션(system, capture)을 독립적인 중첩 모델로 분리
- 필드별 기본값, 허용 범위, 유효성 검증(validator)을 포함

사용 예시:
    >>> from mocap_logger.config.schema import AppConfig
    >>> config = AppConfig(**yaml_data)
    >>> print(config.capture.n_markers)
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

# 모듈 로거 설정
logger = logging.getLogger(__name__)

# 세션 ID 최대 길이 (로그 파일 헤더 공간 기준)
SESSION_ID_MAX_LENGTH = 64


# =============================================================================
# system 섹션: 시스템 전역 설정
# =============================================================================

class SystemConfig(BaseModel):
    """
    시스템 전역 설정을 정의하는 모델입니다.

    역할:
    - 로깅 레벨 및 포맷 지정
    - 세션 식별자 관리
    """
    # 로그 출력 레벨
    log_level: str = Field(default="INFO", description="로그 레벨 (DEBUG | INFO | WARNING | ERROR)")
    # 로그 출력 포맷
    log_format: str = Field(default="json", description="로그 포맷 (json | text)")
    # 로그 파일 저장 디렉토리 경로
    log_dir: str = Field(default="output/logs", description="로그 저장 디렉토리")
    # 세션 고유 식별자 (빈 문자열이면 UUID로 자동 생성)
    session_id: str = Field(default="", description="세션 ID (비어있으면 UUID 자동생성)")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """로그 레벨이 유효한 Python 로깅 레벨인지 검증합니다."""
        allowed_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        # 대소문자 구분 없이 비교 후 대문자로 정규화
        upper_value = value.upper()
        if upper_value not in allowed_levels:
            error_message = f"log_level은 {allowed_levels} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return upper_value

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        """로그 포맷이 지원되는 형식인지 검증합니다."""
        allowed_formats = ("json", "text")
        if value not in allowed_formats:
            error_message = f"log_format은 {allowed_formats} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return value

    @field_validator("session_id")
    @classmethod
    def validate_session_id(cls, value: str) -> str:
        """세션 ID가 로그 파일 헤더에 들어갈 수 있는지 검증합니다."""
        if len(value) > SESSION_ID_MAX_LENGTH:
            error_message = (
                f"session_id는 {SESSION_ID_MAX_LENGTH}자 이하여야 합니다. "
                f"입력 길이: {len(value)}"
            )
            raise ValueError(error_message)
        # 헤더는 ASCII key=value 줄이므로 출력 가능한 ASCII만 허용 ('=' 제외)
        if any(not (" " < char <= "~") or char == "=" for char in value):
            error_message = f"session_id에 허용되지 않는 문자가 있습니다. 입력값: {value!r}"
            raise ValueError(error_message)
        return value


# =============================================================================
# capture 섹션: 프레임 소스 및 로그 파일 설정
# =============================================================================

class SimulateConfig(BaseModel):
    """
    시뮬레이션 프레임 소스(source=simulate) 설정입니다.

    역할:
    - 난수 시드로 재현 가능한 데이터 생성
    - 가상 트래킹 서버의 프레임레이트와 시작 프레임 번호 지정
    - 마커 가림(dropout) 비율 제어
    """
    # 난수 시드 (None이면 매번 다른 데이터)
    seed: Optional[int] = Field(default=None, description="난수 시드")
    # 가상 서버 프레임레이트 (timestamp 계산용)
    frame_rate: float = Field(default=120.0, description="가상 프레임레이트 (Hz)")
    # 첫 프레임 번호
    start_frame_idx: int = Field(default=0, description="첫 프레임 번호")
    # 마커별 가림 확률 (0.0 = 항상 보임)
    marker_dropout: float = Field(default=0.0, description="마커 가림 확률 (0.0~1.0)")

    @field_validator("frame_rate")
    @classmethod
    def validate_frame_rate(cls, value: float) -> float:
        """프레임레이트가 양수인지 검증합니다."""
        if value <= 0:
            raise ValueError(f"frame_rate는 양수여야 합니다. 입력값: {value}")
        return value

    @field_validator("marker_dropout")
    @classmethod
    def validate_marker_dropout(cls, value: float) -> float:
        """가림 확률이 0.0~1.0 범위인지 검증합니다."""
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"marker_dropout은 0.0~1.0 범위여야 합니다. 입력값: {value}")
        return value


class ReplayConfig(BaseModel):
    """
    재생 프레임 소스(source=replay) 설정입니다.

    역할:
    - 기존 .mtv 로그 파일을 프레임 소스로 재생
    - 반복 재생 여부 제어
    """
    # 재생할 .mtv 파일 경로
    path: str = Field(default="", description="재생할 .mtv 파일 경로")
    # 파일 반복 재생 여부
    loop: bool = Field(default=False, description="파일 반복 재생 여부")


class CaptureConfig(BaseModel):
    """
    캡처 세션 설정을 정의하는 모델입니다.

    역할:
    - 프레임 소스 유형 선택
    - 마커 수(레코드 크기 결정) 및 폴링 주기 설정
    - 출력 디렉토리/파일 이름 지정
    """
    # 프레임 소스 유형 (simulate=난수 생성, replay=기존 로그 재생)
    source: str = Field(default="simulate", description="프레임 소스 (simulate | replay)")
    # 기록할 최대 마커 수
    n_markers: int = Field(default=0, description="마커 수 (0 이상)")
    # 프레임 소스 폴링 주기 (밀리초)
    poll_interval_ms: int = Field(default=10, description="폴링 주기 (ms)")
    # 출력 파일 디렉토리
    output_dir: str = Field(default="output/captures", description="출력 디렉토리")
    # 출력 파일 이름 (확장자 제외, 비어있으면 시각 기반 자동 생성)
    file_name: str = Field(default="", description="출력 파일 이름 (확장자 제외)")
    # 직전과 같은 프레임 번호가 다시 오면 기록하지 않음
    skip_duplicate_frames: bool = Field(default=True, description="중복 프레임 건너뛰기")
    # 시뮬레이션 소스 설정
    simulate: SimulateConfig = Field(default_factory=SimulateConfig, description="시뮬레이션 설정")
    # 재생 소스 설정
    replay: ReplayConfig = Field(default_factory=ReplayConfig, description="재생 설정")

    @field_validator("source")
    @classmethod
    def validate_source(cls, value: str) -> str:
        """프레임 소스 유형이 허용된 값인지 검증합니다."""
        allowed_sources = ("simulate", "replay")
        if value not in allowed_sources:
            error_message = f"source는 {allowed_sources} 중 하나여야 합니다. 입력값: '{value}'"
            raise ValueError(error_message)
        return value

    @field_validator("n_markers")
    @classmethod
    def validate_n_markers(cls, value: int) -> int:
        """마커 수가 0 이상인지 검증합니다."""
        if value < 0:
            raise ValueError(f"n_markers는 0 이상이어야 합니다. 입력값: {value}")
        return value

    @field_validator("poll_interval_ms")
    @classmethod
    def validate_poll_interval_ms(cls, value: int) -> int:
        """폴링 주기가 양수인지 검증합니다."""
        if value <= 0:
            raise ValueError(f"poll_interval_ms는 양수여야 합니다. 입력값: {value}")
        return value


# =============================================================================
# 최상위 AppConfig: 모든 섹션을 통합하는 루트 모델
# =============================================================================

class AppConfig(BaseModel):
    """
    애플리케이션 전체 설정을 통합하는 최상위 모델입니다.

    역할:
    - config.yaml의 모든 섹션을 하나의 타입 안전한 객체로 통합
    - 각 섹션이 누락된 경우 기본값으로 자동 생성

    사용 예시:
        >>> config = AppConfig(**{"capture": {"n_markers": 20}})
        >>> config.capture.n_markers
        20
        >>> config.capture.source
        'simulate'
    """
    # 시스템 전역 설정
    system: SystemConfig = Field(default_factory=SystemConfig, description="시스템 설정")
    # 캡처 설정
    capture: CaptureConfig = Field(default_factory=CaptureConfig, description="캡처 설정")
