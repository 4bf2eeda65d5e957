"""
Tests for the pure helpers both participants share: room / channel naming,
initiator election and the signal envelope codec.
"""

import pytest

from pairline.core.pairing import channel_name, is_initiator, room_id
from pairline.core.signals import (
    AnswerEnvelope,
    EnvelopeError,
    IceCandidate,
    IceCandidateEnvelope,
    OfferEnvelope,
    ReadyEnvelope,
    SessionDescription,
    decode_envelope,
    encode_envelope,
)

A = "0f3a" * 8
B = "9c1e" * 8


class TestPairing:
    def test_room_id_is_order_independent(self):
        assert room_id(A, B) == room_id(B, A) == f"{A}-{B}"

    def test_channel_matches_room(self):
        assert channel_name(B, A) == room_id(A, B)

    def test_exactly_one_initiator(self):
        assert is_initiator(A, B) is True
        assert is_initiator(B, A) is False

    def test_self_pairing_rejected(self):
        with pytest.raises(ValueError):
            room_id(A, A)


class TestEnvelopes:
    def test_offer_wire_shape(self):
        envelope = OfferEnvelope(sender=A, recipient=B, payload=SessionDescription(type="offer", sdp="v=0"))
        assert encode_envelope(envelope) == {
            "kind": "offer",
            "from": A,
            "to": B,
            "payload": {"type": "offer", "sdp": "v=0"},
        }

    def test_decode_picks_variant_by_kind(self):
        answer = decode_envelope({"kind": "answer", "from": B, "to": A, "payload": {"type": "answer", "sdp": "x"}})
        assert isinstance(answer, AnswerEnvelope)
        assert answer.sender == B and answer.recipient == A

        ready = decode_envelope({"kind": "ready", "from": A, "to": B})
        assert isinstance(ready, ReadyEnvelope)
        assert ready.payload.restart is False

    def test_candidate_uses_browser_field_names(self):
        candidate = IceCandidate(candidate="candidate:1 1 udp 1 10.0.0.1 5000 typ host", sdp_mid="0", sdp_mline_index=0)
        data = encode_envelope(IceCandidateEnvelope(sender=A, recipient=B, payload=candidate))
        assert data["payload"] == {
            "candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        }
        assert decode_envelope(data).payload == candidate

    @pytest.mark.parametrize(
        "data",
        [
            None,
            "offer",
            {"kind": "bye", "from": A, "to": B},
            {"kind": "offer", "from": A, "to": B},
            {"kind": "answer", "from": A, "to": B, "payload": {"type": "rollback", "sdp": ""}},
            {"kind": "ready", "to": B},
            {"kind": "ice-candidate", "from": A, "to": B, "payload": {"sdpMid": "0"}},
        ],
    )
    def test_malformed_rejected(self, data):
        with pytest.raises(EnvelopeError):
            decode_envelope(data)
