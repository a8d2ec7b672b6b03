"""ICE 서버 제공 모듈.

클라이언트가 RTCPeerConnection을 만들 때 사용할 STUN/TURN 서버 목록을 제공합니다.

제공 방식:
    - static: 환경변수의 STUN/TURN 서버 + 공개 Google STUN 서버
    - twilio: Twilio Network Traversal Service에서 단기 TURN credential 발급
    - auto: Twilio 자격 증명이 있으면 twilio, 없으면 static

시그널링 상태와는 무관하며, 실패는 ICEServiceError로만 전달됩니다.
"""

import asyncio
import logging
from typing import List

import aiohttp

from .config import DEFAULT_STUN_SERVERS, SignalingSettings

logger = logging.getLogger(__name__)

TWILIO_TOKENS_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Tokens.json"


class ICEServiceError(Exception):
    """ICE 서버 정보를 가져올 수 없을 때 발생하는 예외."""


class ICEServerProvider:
    """ICE 서버 목록 제공자.

    Attributes:
        settings (SignalingSettings): ICE 관련 설정
    """

    def __init__(self, settings: SignalingSettings):
        self.settings = settings

    @property
    def provider(self) -> str:
        """실제로 사용할 제공 방식 (static 또는 twilio)."""
        if self.settings.ICE_PROVIDER == "auto":
            return "twilio" if self.settings.has_twilio else "static"
        return self.settings.ICE_PROVIDER

    async def get_ice_servers(self) -> List[dict]:
        """ICE 서버 목록을 반환합니다.

        Returns:
            List[dict]: {"urls": ..., "username"?: ..., "credential"?: ...} 목록

        Raises:
            ICEServiceError: Twilio 설정이 없거나 요청이 실패한 경우
        """
        if self.provider == "twilio":
            return await self._twilio_servers()
        return self._static_servers()

    def _static_servers(self) -> List[dict]:
        ice_servers = []

        if self.settings.STUN_SERVER_URL:
            ice_servers.append({"urls": self.settings.STUN_SERVER_URL})

        for url in DEFAULT_STUN_SERVERS:
            ice_servers.append({"urls": url})

        if self.settings.has_turn_server:
            ice_servers.append({
                "urls": self.settings.TURN_SERVER_URL,
                "username": self.settings.TURN_USERNAME,
                "credential": self.settings.TURN_CREDENTIAL,
            })
            logger.info("ICE 서버 제공: STUN + TURN")
        else:
            logger.info("ICE 서버 제공: STUN만 (TURN 미설정)")

        return ice_servers

    async def _twilio_servers(self) -> List[dict]:
        if not self.settings.has_twilio:
            raise ICEServiceError("Twilio credentials not configured")

        try:
            payload = await self._request_twilio_token()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Twilio TURN credential 요청 실패: {e}")
            raise ICEServiceError(f"Twilio request failed: {e}") from e

        if not isinstance(payload, dict):
            raise ICEServiceError("Unexpected Twilio response")

        ice_servers = []
        for entry in payload.get("ice_servers") or []:
            urls = entry.get("urls") or entry.get("url")
            if not urls:
                continue
            server = {"urls": urls}
            if entry.get("username"):
                server["username"] = entry["username"]
            if entry.get("credential"):
                server["credential"] = entry["credential"]
            ice_servers.append(server)

        if not ice_servers:
            raise ICEServiceError("Twilio returned no ICE servers")

        logger.info(f"ICE 서버 제공: Twilio ({len(ice_servers)}개)")
        return ice_servers

    async def _request_twilio_token(self) -> dict:
        url = TWILIO_TOKENS_URL.format(account_sid=self.settings.TWILIO_ACCOUNT_SID)
        timeout = aiohttp.ClientTimeout(total=self.settings.ICE_REQUEST_TIMEOUT)
        auth = aiohttp.BasicAuth(self.settings.TWILIO_ACCOUNT_SID, self.settings.TWILIO_AUTH_TOKEN)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, data={"Ttl": str(self.settings.TWILIO_TOKEN_TTL)}, auth=auth) as response:
                response.raise_for_status()
                return await response.json()
