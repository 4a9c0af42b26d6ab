"""공용 테스트 픽스처.

실제 미디어 스택 없이 협상 로직을 검증하기 위한 가짜 MediaEngine,
릴레이용 가짜 WebSocket, 이벤트 기록기를 제공합니다.
"""

import asyncio
import itertools
import json
from typing import Any, Dict, List, Optional

import pytest

from modules.signaling import SignalingRelay


class FakeMediaEngine:
    """호출을 기록하는 MediaEngine 구현.

    Attributes:
        calls (List[str]): 호출된 메서드 이름 (순서대로)
        remote_candidates (List[dict]): 적용된 원격 candidate
        fail_on (set): 예외를 던질 메서드 이름
        reject_candidates (set): 적용 시 실패할 candidate 문자열
        gates (Dict[str, asyncio.Event]): 메서드 이름 → 완료 전에 기다릴 이벤트
        active (int): 진행 중인 엔진 호출 수 (close 제외)
        max_active (int): 동시에 진행된 엔진 호출 수의 최댓값
    """

    _sessions = itertools.count(1)

    def __init__(self, fail_on=()):
        self.session = next(self._sessions)
        self.calls: List[str] = []
        self.remote_candidates: List[Dict[str, Any]] = []
        self.remote: Optional[Dict[str, Any]] = None
        self.closed = False
        self.fail_on = set(fail_on)
        self.reject_candidates = set()
        self.gates: Dict[str, asyncio.Event] = {}
        self.active = 0
        self.max_active = 0
        self._state_listener = None
        self._ice_state_listener = None
        self._candidate_listener = None

    async def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise RuntimeError(f"{name} rejected")

        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            gate = self.gates.get(name)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(0)
        finally:
            self.active -= 1

    def on_connection_state_change(self, listener) -> None:
        self._state_listener = listener

    def on_ice_state_change(self, listener) -> None:
        self._ice_state_listener = listener

    def on_ice_candidate(self, listener) -> None:
        self._candidate_listener = listener

    async def create_offer(self):
        await self._call("create_offer")
        return {"type": "offer", "sdp": f"v=0 fake-offer {self.session}"}

    async def create_answer(self):
        await self._call("create_answer")
        return {"type": "answer", "sdp": f"v=0 fake-answer {self.session}"}

    async def set_local_description(self, description):
        await self._call("set_local_description")
        return None

    async def set_remote_description(self, description):
        await self._call("set_remote_description")
        self.remote = description

    async def add_ice_candidate(self, candidate):
        await self._call("add_ice_candidate")
        if candidate.get("candidate") in self.reject_candidates:
            raise ValueError("malformed candidate")
        self.remote_candidates.append(candidate)

    async def close(self):
        self.calls.append("close")
        self.closed = True

    # 테스트에서 엔진 콜백을 흉내낼 때 사용
    async def emit_state(self, state: str) -> None:
        await self._state_listener(state)

    async def emit_ice_state(self, state: str) -> None:
        await self._ice_state_listener(state)

    async def emit_candidate(self, candidate: Dict[str, Any]) -> None:
        await self._candidate_listener(candidate)


class EventRecorder:
    """코디네이터 emit 콜백 대용."""

    def __init__(self):
        self.events = []

    async def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


class FakeWebSocket:
    """릴레이 ClientConnection이 사용하는 전송 객체 대용."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.block: Optional[asyncio.Event] = None
        self.fail = False

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        if self.block is not None:
            await self.block.wait()
        self.sent.append(json.loads(text))

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["type"] == message_type]


def candidate(n: int) -> Dict[str, Any]:
    return {"candidate": f"candidate:{n} 1 udp 2122260223 10.0.0.{n} 5000{n} typ host",
            "sdpMid": "0", "sdpMLineIndex": 0}


async def settle(rounds: int = 10) -> None:
    """writer 태스크가 큐를 비울 때까지 이벤트 루프를 양보합니다."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def engine():
    return FakeMediaEngine()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
async def relay():
    relay = SignalingRelay()
    yield relay
    await relay.close_all()
