"""
Signal envelope codec: the negotiation messages carried over the relay.

Envelopes are a tagged union on ``kind``.  Anything arriving from the relay is
validated here before dispatch; malformed payloads raise EnvelopeError and are
dropped by the consumer.

Wire shape (relay event name == kind):
  {"kind": "offer", "from": "<id>", "to": "<id>", "payload": {"type": "offer", "sdp": "..."}}
"""

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class SignalKind(str, Enum):
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    READY = "ready"


class SessionDescription(BaseModel):
    type: Literal["offer", "answer"]
    sdp: str

    model_config = {"frozen": True}


class IceCandidate(BaseModel):
    candidate: str
    sdp_mid: str | None = Field(None, alias="sdpMid")
    sdp_mline_index: int | None = Field(None, alias="sdpMLineIndex")

    model_config = {"populate_by_name": True, "frozen": True}


class ReadyPayload(BaseModel):
    # Set by a non-initiator asking the initiator for an ICE-restart offer
    restart: bool = False

    model_config = {"frozen": True}


class _Envelope(BaseModel):
    sender: str = Field(alias="from", min_length=1)
    recipient: str = Field(alias="to", min_length=1)

    model_config = {"populate_by_name": True, "frozen": True}


class ReadyEnvelope(_Envelope):
    kind: Literal["ready"] = "ready"
    payload: ReadyPayload = ReadyPayload()


class OfferEnvelope(_Envelope):
    kind: Literal["offer"] = "offer"
    payload: SessionDescription


class AnswerEnvelope(_Envelope):
    kind: Literal["answer"] = "answer"
    payload: SessionDescription


class IceCandidateEnvelope(_Envelope):
    kind: Literal["ice-candidate"] = "ice-candidate"
    payload: IceCandidate


SignalEnvelope = Annotated[
    Union[ReadyEnvelope, OfferEnvelope, AnswerEnvelope, IceCandidateEnvelope],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter = TypeAdapter(SignalEnvelope)


class EnvelopeError(ValueError):
    pass


def decode_envelope(data: object) -> SignalEnvelope:
    """Validate a relay payload into a concrete envelope."""
    try:
        return _adapter.validate_python(data)
    except ValidationError as exc:
        raise EnvelopeError(f"invalid signal envelope: {exc.error_count()} error(s)") from exc


def encode_envelope(envelope: _Envelope) -> dict:
    return envelope.model_dump(by_alias=True, mode="json")
