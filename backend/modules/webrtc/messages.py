"""시그널링 메시지 코덱.

WebSocket으로 들어오는 텍스트 프레임을 한 번만 디코딩하여
메시지 타입별 모델(tagged union)로 변환하고, 서버가 보내는
메시지를 생성하는 헬퍼를 제공합니다.

Inbound:
    broadcaster-ready, viewer-join, offer, answer, ice-candidate

Outbound:
    ack, viewer-join, offer, answer, ice-candidate, end, viewer-left, error

sdp / candidate 필드는 내용 검증 없이 그대로 전달되는 불투명(opaque) 값입니다.
"""

import json
import logging
from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class _Inbound(BaseModel):
    """클라이언트 메시지 공통 베이스."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BroadcasterReady(_Inbound):
    type: Literal["broadcaster-ready"] = "broadcaster-ready"


class ViewerJoin(_Inbound):
    type: Literal["viewer-join"] = "viewer-join"


class _Relay(_Inbound):
    viewer_id: str = Field(alias="viewerId", min_length=1)


class _SessionDescriptionRelay(_Relay):
    sdp: Any

    @field_validator("sdp")
    @classmethod
    def require_sdp(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("sdp is required")
        return v


class Offer(_SessionDescriptionRelay):
    type: Literal["offer"] = "offer"


class Answer(_SessionDescriptionRelay):
    type: Literal["answer"] = "answer"


class IceCandidate(_Relay):
    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: Any
    sender: Literal["broadcaster", "viewer"] = Field(alias="from")

    @field_validator("candidate")
    @classmethod
    def require_candidate(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("candidate is required")
        return v


class Unknown(_Inbound):
    """인식되지 않은 type의 메시지."""
    type: str


InboundMessage = Union[BroadcasterReady, ViewerJoin, Offer, Answer, IceCandidate, Unknown]

INBOUND_TYPES: Dict[str, Type[_Inbound]] = {
    "broadcaster-ready": BroadcasterReady,
    "viewer-join": ViewerJoin,
    "offer": Offer,
    "answer": Answer,
    "ice-candidate": IceCandidate,
}


def decode_message(raw: Union[str, bytes]) -> Optional[InboundMessage]:
    """텍스트 프레임을 메시지 모델로 디코딩합니다.

    Args:
        raw: WebSocket으로 수신한 원본 페이로드

    Returns:
        Optional[InboundMessage]: 디코딩된 메시지.
            JSON이 아니거나, 객체가 아니거나, type이 없거나,
            알려진 type인데 필수 필드가 없으면 None.
            알 수 없는 type이면 Unknown.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError, RecursionError):
        logger.debug("JSON 파싱 실패, 메시지 무시")
        return None

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        logger.debug("type 필드가 없는 메시지 무시")
        return None

    message_cls = INBOUND_TYPES.get(data["type"])
    if message_cls is None:
        return Unknown(type=data["type"])

    try:
        return message_cls.model_validate(data)
    except ValidationError as e:
        logger.debug(f"'{data['type']}' 메시지 필드 검증 실패: {e.error_count()}개 오류")
        return None


# ============================================================
# Outbound 메시지
# ============================================================

def ack(role: str, viewer_id: Optional[str] = None) -> dict:
    message = {"type": "ack", "role": role}
    if viewer_id is not None:
        message["viewerId"] = viewer_id
    return message


def viewer_joined(viewer_id: str) -> dict:
    return {"type": "viewer-join", "viewerId": viewer_id}


def viewer_left(viewer_id: str) -> dict:
    return {"type": "viewer-left", "viewerId": viewer_id}


def relay_offer(message: Offer) -> dict:
    return {"type": "offer", "sdp": message.sdp, "viewerId": message.viewer_id}


def relay_answer(message: Answer) -> dict:
    return {"type": "answer", "sdp": message.sdp, "viewerId": message.viewer_id}


def relay_candidate(message: IceCandidate) -> dict:
    return {"type": "ice-candidate", "candidate": message.candidate, "viewerId": message.viewer_id}


def end() -> dict:
    return {"type": "end"}


def role_rejected(current_role: str) -> dict:
    """이미 역할이 정해진 연결의 역할 변경 거부 메시지."""
    return {"type": "error", "reason": "role-already-assigned", "role": current_role}
