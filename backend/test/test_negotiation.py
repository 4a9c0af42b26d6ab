"""NegotiationCoordinator 상태 머신 테스트."""

import asyncio
import logging

import pytest

from conftest import FakeMediaEngine, candidate, settle
from modules.signaling import NegotiationError
from modules.webrtc import (
    ConnectionStateChanged,
    IceStateChanged,
    LocalCandidate,
    LocalDescription,
    NegotiationCoordinator,
    NegotiationFailed,
    NegotiationState,
    Role,
    SessionClosed,
    resolve_role,
)

OFFER = {"type": "offer", "sdp": "v=0 remote-offer"}
ANSWER = {"type": "answer", "sdp": "v=0 remote-answer"}


@pytest.fixture
def initiator(engine, recorder):
    return NegotiationCoordinator("abc", "xyz", engine, recorder)


@pytest.fixture
def responder(engine, recorder):
    return NegotiationCoordinator("xyz", "abc", engine, recorder)


# ------------------------------------------------------------
# 역할 결정
# ------------------------------------------------------------

def test_smaller_id_initiates():
    assert resolve_role("abc", "xyz") == Role.INITIATOR
    assert resolve_role("xyz", "abc") == Role.RESPONDER


def test_role_is_symmetric_for_uuid_like_ids():
    a, b = "7f3c2a10-0000-4000-8000-000000000001", "7f3c2a10-0000-4000-8000-000000000002"
    assert {resolve_role(a, b), resolve_role(b, a)} == {Role.INITIATOR, Role.RESPONDER}


def test_equal_ids_cannot_negotiate():
    with pytest.raises(NegotiationError):
        resolve_role("abc", "abc")


# ------------------------------------------------------------
# offer / answer
# ------------------------------------------------------------

async def test_initiator_offer_then_answer(initiator, engine, recorder):
    assert await initiator.start_offer() is True
    assert initiator.state == NegotiationState.HAVE_LOCAL_OFFER
    assert initiator.role == Role.INITIATOR

    sent = recorder.of_type(LocalDescription)
    assert len(sent) == 1 and sent[0].kind == "offer" and sent[0].peer_id == "xyz"

    assert await initiator.handle_answer(ANSWER) is True
    assert initiator.state == NegotiationState.STABLE
    assert engine.remote == ANSWER


async def test_start_offer_only_from_idle(initiator, recorder):
    await initiator.start_offer()
    assert await initiator.start_offer() is False
    assert len(recorder.of_type(LocalDescription)) == 1


async def test_duplicate_answer_is_discarded(initiator, engine):
    await initiator.start_offer()
    await initiator.handle_answer(ANSWER)

    assert await initiator.handle_answer(ANSWER) is False
    assert initiator.state == NegotiationState.STABLE
    assert engine.calls.count("set_remote_description") == 1


async def test_answer_without_offer_is_discarded(initiator, engine):
    assert await initiator.handle_answer(ANSWER) is False
    assert initiator.state == NegotiationState.IDLE
    assert "set_remote_description" not in engine.calls


async def test_responder_answers_offer(responder, engine, recorder):
    assert await responder.handle_offer(OFFER) is True
    assert responder.state == NegotiationState.STABLE
    assert responder.role == Role.RESPONDER

    sent = recorder.of_type(LocalDescription)
    assert [e.kind for e in sent] == ["answer"]
    assert engine.calls == ["set_remote_description", "create_answer", "set_local_description"]


async def test_second_offer_is_dropped(responder, engine):
    await responder.handle_offer(OFFER)
    assert await responder.handle_offer(OFFER) is False
    assert engine.calls.count("set_remote_description") == 1


async def test_glare_keeps_local_offer(initiator, engine):
    await initiator.start_offer()
    assert await initiator.handle_offer(OFFER) is False
    assert initiator.state == NegotiationState.HAVE_LOCAL_OFFER
    assert "set_remote_description" not in engine.calls


# ------------------------------------------------------------
# ICE candidate
# ------------------------------------------------------------

async def test_early_candidates_applied_in_order_after_offer(responder, engine):
    for n in (1, 2, 3):
        assert await responder.add_candidate(candidate(n)) is False
    assert len(responder.pending) == 3
    assert engine.remote_candidates == []

    await responder.handle_offer(OFFER)

    assert engine.remote_candidates == [candidate(1), candidate(2), candidate(3)]
    assert len(responder.pending) == 0
    # Drained right after the remote description, before the answer
    assert engine.calls[:5] == [
        "set_remote_description",
        "add_ice_candidate", "add_ice_candidate", "add_ice_candidate",
        "create_answer",
    ]


async def test_early_candidates_applied_after_answer(initiator, engine):
    await initiator.start_offer()
    await initiator.add_candidate(candidate(1))
    await initiator.add_candidate(candidate(2))
    assert engine.remote_candidates == []

    await initiator.handle_answer(ANSWER)
    assert engine.remote_candidates == [candidate(1), candidate(2)]


async def test_late_candidate_applied_immediately(responder, engine):
    await responder.handle_offer(OFFER)
    assert await responder.add_candidate(candidate(4)) is True
    assert engine.remote_candidates == [candidate(4)]
    assert len(responder.pending) == 0


async def test_bad_candidate_does_not_stop_drain(responder, engine, recorder):
    engine.reject_candidates.add(candidate(2)["candidate"])
    for n in (1, 2, 3):
        await responder.add_candidate(candidate(n))

    await responder.handle_offer(OFFER)

    assert engine.remote_candidates == [candidate(1), candidate(3)]
    assert responder.state == NegotiationState.STABLE
    assert recorder.of_type(NegotiationFailed) == []


async def test_empty_candidate_ignored(responder):
    assert await responder.add_candidate(None) is False
    assert await responder.add_candidate({}) is False
    assert len(responder.pending) == 0


# ------------------------------------------------------------
# 종료
# ------------------------------------------------------------

async def test_close_discards_pending_candidates(responder, engine, recorder):
    await responder.add_candidate(candidate(1))
    await responder.add_candidate(candidate(2))

    assert await responder.close("hangup") is True

    assert responder.state == NegotiationState.CLOSED
    assert len(responder.pending) == 0
    assert engine.closed
    assert recorder.of_type(SessionClosed) == [SessionClosed("abc", "hangup")]

    assert await responder.add_candidate(candidate(3)) is False
    assert await responder.handle_offer(OFFER) is False
    assert await responder.close() is False
    assert engine.remote_candidates == []


async def test_failed_connection_keeps_session(initiator, engine, recorder):
    await initiator.start_offer()
    await initiator.handle_answer(ANSWER)

    await engine.emit_state("failed")

    assert initiator.state == NegotiationState.STABLE
    assert recorder.of_type(ConnectionStateChanged) == [ConnectionStateChanged("xyz", "failed")]
    assert recorder.of_type(SessionClosed) == []
    assert not engine.closed


async def test_disconnected_connection_only_warns(initiator, engine, recorder, caplog):
    await initiator.start_offer()
    await initiator.handle_answer(ANSWER)
    recorder.events.clear()

    with caplog.at_level(logging.WARNING, logger="modules.webrtc.negotiation"):
        await engine.emit_state("disconnected")

    assert initiator.state == NegotiationState.STABLE
    assert recorder.events == [ConnectionStateChanged("xyz", "disconnected")]
    assert not engine.closed
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1 and "연결 끊김" in warnings[0].getMessage()


async def test_ice_state_change_is_surfaced(initiator, engine, recorder):
    await initiator.start_offer()
    await initiator.handle_answer(ANSWER)

    await engine.emit_ice_state("checking")
    await engine.emit_ice_state("failed")

    assert recorder.of_type(IceStateChanged) == [
        IceStateChanged("xyz", "checking"),
        IceStateChanged("xyz", "failed"),
    ]
    assert initiator.state == NegotiationState.STABLE
    assert recorder.of_type(SessionClosed) == []
    assert not engine.closed


async def test_engine_callbacks_after_close_are_ignored(initiator, engine, recorder):
    await initiator.close()
    recorder.events.clear()

    await engine.emit_state("connected")
    await engine.emit_ice_state("connected")
    await engine.emit_candidate(candidate(1))

    assert recorder.events == []


# ------------------------------------------------------------
# 엔진 호출 직렬화
# ------------------------------------------------------------

async def test_candidates_wait_for_answer_in_progress(responder, engine):
    engine.gates["create_answer"] = asyncio.Event()
    offer_task = asyncio.create_task(responder.handle_offer(OFFER))
    await settle()
    assert engine.calls == ["set_remote_description", "create_answer"]

    others = asyncio.gather(
        responder.add_candidate(candidate(1)),
        responder.add_candidate(candidate(2)),
        responder.start_offer(),
    )
    await settle()
    assert "add_ice_candidate" not in engine.calls

    engine.gates["create_answer"].set()
    assert await offer_task is True
    assert await others == [True, True, False]

    assert engine.max_active == 1
    assert engine.calls == [
        "set_remote_description", "create_answer", "set_local_description",
        "add_ice_candidate", "add_ice_candidate",
    ]
    assert engine.remote_candidates == [candidate(1), candidate(2)]


async def test_answer_waits_for_offer_in_progress(initiator, engine):
    engine.gates["create_offer"] = asyncio.Event()
    offer_task = asyncio.create_task(initiator.start_offer())
    await settle()

    answer_task = asyncio.create_task(initiator.handle_answer(ANSWER))
    await settle()
    assert engine.calls == ["create_offer"]

    engine.gates["create_offer"].set()
    assert await offer_task is True
    assert await answer_task is True

    assert engine.max_active == 1
    assert engine.calls == ["create_offer", "set_local_description", "set_remote_description"]
    assert initiator.state == NegotiationState.STABLE


async def test_local_candidate_forwarded(initiator, engine, recorder):
    await engine.emit_candidate(candidate(7))
    assert recorder.of_type(LocalCandidate) == [LocalCandidate("xyz", candidate(7))]


async def test_close_during_remote_description_discards_result(responder, engine, recorder):
    engine.gates["set_remote_description"] = asyncio.Event()
    task = asyncio.create_task(responder.handle_offer(OFFER))
    await settle()
    assert "set_remote_description" in engine.calls

    await responder.close("hangup")
    engine.gates["set_remote_description"].set()

    assert await task is False
    assert responder.state == NegotiationState.CLOSED
    assert "create_answer" not in engine.calls
    assert recorder.of_type(LocalDescription) == []


# ------------------------------------------------------------
# 협상 실패
# ------------------------------------------------------------

async def test_rejected_offer_closes_session(recorder):
    engine = FakeMediaEngine(fail_on={"set_remote_description"})
    coordinator = NegotiationCoordinator("xyz", "abc", engine, recorder)

    assert await coordinator.handle_offer(OFFER) is False

    assert coordinator.state == NegotiationState.CLOSED
    assert [type(e) for e in recorder.events] == [NegotiationFailed, SessionClosed]
    assert recorder.of_type(SessionClosed)[0].reason == "negotiation-failed"


async def test_malformed_offer_closes_session(responder, engine, recorder):
    assert await responder.handle_offer({"type": "offer"}) is False
    assert responder.state == NegotiationState.CLOSED
    assert "set_remote_description" not in engine.calls
    assert len(recorder.of_type(NegotiationFailed)) == 1


async def test_failed_offer_creation_closes_session(recorder):
    engine = FakeMediaEngine(fail_on={"create_offer"})
    coordinator = NegotiationCoordinator("abc", "xyz", engine, recorder)

    assert await coordinator.start_offer() is False
    assert coordinator.is_closed
    assert recorder.of_type(LocalDescription) == []
