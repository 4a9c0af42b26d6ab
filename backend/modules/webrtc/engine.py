"""미디어 엔진 인터페이스와 aiortc 어댑터.

NegotiationCoordinator는 구체적인 WebRTC 구현이 아니라 ``MediaEngine``
프로토콜에만 의존합니다. 실제 미디어 인코딩/전송은 엔진이 담당합니다.

Description 형식:
    ``{"type": "offer" | "answer", "sdp": "v=0\\r\\n..."}``

Candidate 형식:
    ``{"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}``

Classes:
    MediaEngine: 협상에 필요한 엔진 기능 집합 (Protocol)
    AiortcMediaEngine: aiortc RTCPeerConnection 기반 구현

See Also:
    negotiation.py: 엔진을 호출하는 협상 상태 머신
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .config import ICEServerConfig, ice_config

logger = logging.getLogger(__name__)

StateListener = Callable[[str], Awaitable[None]]
CandidateListener = Callable[[Dict[str, Any]], Awaitable[None]]


class MediaEngine(Protocol):
    """협상 코디네이터가 사용하는 미디어 엔진 기능."""

    async def create_offer(self) -> Dict[str, Any]: ...

    async def create_answer(self) -> Dict[str, Any]: ...

    async def set_local_description(self, description: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """로컬 description을 설정합니다.

        Returns:
            실제로 적용된 description (엔진이 candidate를 포함시킨 경우 등).
            None이면 입력 description이 그대로 사용됩니다.
        """
        ...

    async def set_remote_description(self, description: Dict[str, Any]) -> None: ...

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None: ...

    async def close(self) -> None: ...

    def on_connection_state_change(self, listener: StateListener) -> None: ...

    def on_ice_candidate(self, listener: CandidateListener) -> None: ...

    def on_ice_state_change(self, listener: StateListener) -> None: ...


def build_rtc_configuration(config: ICEServerConfig = ice_config) -> RTCConfiguration:
    """ICE 서버 설정으로 RTCConfiguration을 생성합니다."""
    ice_servers = []

    # STUN 서버 추가 (커스텀 + Google 백업)
    if config.STUN_SERVER_URL:
        ice_servers.append(RTCIceServer(urls=[config.STUN_SERVER_URL]))
    for stun_url in config.DEFAULT_STUN_SERVERS:
        ice_servers.append(RTCIceServer(urls=[stun_url]))

    # TURN 서버 추가
    if config.has_turn_server:
        ice_servers.append(RTCIceServer(
            urls=[config.TURN_SERVER_URL],
            username=config.TURN_USERNAME,
            credential=config.TURN_CREDENTIAL
        ))
        logger.info(f"[Engine] TURN 서버 설정: {config.TURN_SERVER_URL}")
    else:
        logger.debug("[Engine] TURN 서버 설정 없음 - STUN만 사용")

    return RTCConfiguration(iceServers=ice_servers)


def candidate_from_dict(data: Dict[str, Any]):
    """와이어 candidate dict를 aiortc RTCIceCandidate로 변환합니다.

    브라우저가 보내는 중첩 형식 ``{"candidate": {"candidate": ...}}``도 허용합니다.

    Raises:
        ValueError: candidate 문자열이 없거나 파싱할 수 없는 경우
    """
    inner = data.get("candidate")
    if isinstance(inner, dict):
        data = inner
        inner = data.get("candidate")

    candidate_str = inner or ""
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]
    if not candidate_str:
        raise ValueError("empty candidate")

    ice_candidate = candidate_from_sdp(candidate_str)
    ice_candidate.sdpMid = data.get("sdpMid")
    ice_candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return ice_candidate


def candidate_to_dict(candidate) -> Dict[str, Any]:
    """aiortc RTCIceCandidate를 와이어 candidate dict로 변환합니다."""
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


class AiortcMediaEngine:
    """aiortc RTCPeerConnection을 MediaEngine으로 감싸는 어댑터.

    로컬 미디어 트랙은 생성 시 주입합니다 (장치 획득은 이 모듈의 범위 밖).
    트랙이 없으면 offer 생성 시 audio/video 수신 전용 transceiver를 추가합니다.

    Note:
        - aiortc는 setLocalDescription 중에 ICE candidate를 모두 수집하여
          localDescription SDP에 포함시키므로, set_local_description은
          pc.localDescription을 반환합니다.

    Examples:
        >>> engine = AiortcMediaEngine(tracks=[microphone_track])
        >>> offer = await engine.create_offer()
        >>> offer = await engine.set_local_description(offer)
    """

    def __init__(
        self,
        tracks: Iterable[MediaStreamTrack] = (),
        configuration: Optional[RTCConfiguration] = None,
    ):
        self.pc = RTCPeerConnection(configuration=configuration or build_rtc_configuration())
        self._state_listener: Optional[StateListener] = None
        self._candidate_listener: Optional[CandidateListener] = None
        self._ice_state_listener: Optional[StateListener] = None
        self._has_media = False

        for track in tracks:
            self.pc.addTrack(track)
            self._has_media = True

        @self.pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[Engine] 연결 상태: {self.pc.connectionState}")
            if self._state_listener:
                await self._state_listener(self.pc.connectionState)

        @self.pc.on("iceconnectionstatechange")
        async def on_ice_connection_state_change():
            logger.info(f"[Engine] ICE 상태: {self.pc.iceConnectionState}")
            if self._ice_state_listener:
                await self._ice_state_listener(self.pc.iceConnectionState)

        @self.pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate and self._candidate_listener:
                await self._candidate_listener(candidate_to_dict(candidate))

    def on_connection_state_change(self, listener: StateListener) -> None:
        self._state_listener = listener

    def on_ice_candidate(self, listener: CandidateListener) -> None:
        self._candidate_listener = listener

    def on_ice_state_change(self, listener: StateListener) -> None:
        self._ice_state_listener = listener

    async def create_offer(self) -> Dict[str, Any]:
        if not self._has_media and not self.pc.getTransceivers():
            # Equivalent of offerToReceiveAudio/offerToReceiveVideo
            self.pc.addTransceiver("audio", direction="recvonly")
            self.pc.addTransceiver("video", direction="recvonly")
        offer = await self.pc.createOffer()
        return {"type": offer.type, "sdp": offer.sdp}

    async def create_answer(self) -> Dict[str, Any]:
        answer = await self.pc.createAnswer()
        return {"type": answer.type, "sdp": answer.sdp}

    async def set_local_description(self, description: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        await self.pc.setLocalDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )
        local = self.pc.localDescription
        return {"type": local.type, "sdp": local.sdp} if local else None

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        await self.pc.setRemoteDescription(
            RTCSessionDescription(sdp=description["sdp"], type=description["type"])
        )

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        await self.pc.addIceCandidate(candidate_from_dict(candidate))

    async def close(self) -> None:
        await self.pc.close()
