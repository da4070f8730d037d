"""
모션캡처 프레임 로거 패키지

구성:
- format: 필드 스키마, 프레임 바이너리 코덱, .mtv 로그 파일 입출력
- capture: 프레임 소스 폴링 및 캡처 세션 상태 머신
- config: YAML 설정 스키마 및 로더
- logging: 구조화 로깅
"""

__version__ = "0.1.0"
