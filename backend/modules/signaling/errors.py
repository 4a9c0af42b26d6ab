"""시그널링 예외 정의.

릴레이와 클라이언트 양쪽에서 사용하는 예외 계층입니다.

Classes:
    SignalingError: 모든 시그널링 예외의 기본 클래스
    TransportError: 연결 종료/도달 불가 (메시지 폐기, 재시도 없음)
    ProtocolError: 잘못된 envelope 또는 알 수 없는 타입 (로그 후 연결 유지)
    NegotiationError: 잘못된 상태의 메시지, 미디어 엔진이 거부한 description
    RoomError: 이미 없는 룸에 대한 퇴장 등 (멱등 no-op으로 처리)
"""


class SignalingError(Exception):
    """시그널링 계층 예외의 기본 클래스."""


class TransportError(SignalingError):
    """전송 계층 오류.

    대상 연결이 닫혔거나 송신 큐가 가득 찬 경우 발생합니다.
    메시지는 폐기되며 재시도하지 않습니다.
    """


class ProtocolError(SignalingError):
    """envelope 파싱/검증 오류."""


class NegotiationError(SignalingError):
    """offer/answer 협상 오류.

    Attributes:
        peer_id (str | None): 오류가 발생한 원격 피어 ID
    """

    def __init__(self, message: str, peer_id: str = None):
        super().__init__(message)
        self.peer_id = peer_id


class RoomError(SignalingError):
    """룸 멤버십 오류 (호출 측에서는 no-op으로 취급)."""
