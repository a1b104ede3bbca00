class BoardStoreError(Exception):
    """Board Store 계층에서 발생하는 모든 예외의 부모 클래스"""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BoardValidationError(BoardStoreError):
    """스키마/식별자/필터 제약 위반. 위반 항목을 모두 모아서 전달합니다."""

    status_code = 422

    def __init__(
        self,
        message: str,
        errors: list[dict] | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, status_code)
        self.errors = errors or []


class BoardNotFoundError(BoardStoreError):
    """board가 없거나, soft delete 되었거나, 권한이 없는 경우 (의도적으로 구분하지 않음)"""

    status_code = 404


class NotAMemberError(BoardStoreError):
    status_code = 404


class PersistenceError(BoardStoreError):
    """MongoDB 호출 자체가 실패한 경우"""

    status_code = 500
