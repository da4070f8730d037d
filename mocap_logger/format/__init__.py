"""
.mtv 로그 포맷 패키지

공통 에러 타입 정의:
- MtvError: 포맷 관련 에러의 기본 클래스
- LogFileNotFoundError: 입력 로그 파일 없음
- HeaderParseError: 헤더 필수 키 누락 또는 값 형식 오류
- SchemaMismatchError: 인코딩 결과/프레임 값이 스키마와 불일치
- TruncatedRecordError: 본문 길이가 레코드 크기의 배수가 아님
- StreamWriteError: 로그 파일 append 중 I/O 실패 (세션 치명 오류)
"""


class MtvError(Exception):
    """.mtv 포맷 처리 중 발생하는 에러의 기본 클래스입니다."""
    pass


class LogFileNotFoundError(MtvError, FileNotFoundError):
    """로드할 로그 파일이 존재하지 않을 때 발생하는 에러입니다."""
    pass


class HeaderParseError(MtvError):
    """헤더에서 필수 키를 찾지 못했거나 값이 잘못되었을 때 발생하는 에러입니다."""
    pass


class SchemaMismatchError(MtvError):
    """프레임 값 또는 레코드 크기가 스키마 선언과 다를 때 발생하는 에러입니다."""
    pass


class TruncatedRecordError(MtvError):
    """본문 길이가 레코드 크기의 정수배가 아닐 때 발생하는 에러입니다."""
    pass


class StreamWriteError(MtvError):
    """로그 파일 쓰기 실패 시 발생하는 에러입니다. 캡처 세션을 종료시킵니다."""
    pass
