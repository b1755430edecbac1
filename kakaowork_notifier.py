"""
Utility per inviare messaggi KakaoWork (esito pipeline) dal processor.
"""
import logging
import httpx
from typing import Optional
from core.config import get_config

logger = logging.getLogger(__name__)

KAKAOWORK_SEND_URL = "https://api.kakaowork.com/v1/messages.send"


async def send_kakaowork_message(
    conversation_id: str,
    message: str,
    bot_token: Optional[str] = None
) -> bool:
    """
    Invia un messaggio testuale a una chat KakaoWork.

    Args:
        conversation_id: ID chat KakaoWork
        message: Testo del messaggio
        bot_token: Token bot (default da config)

    Returns:
        True se inviato con successo, False altrimenti
    """
    try:
        if bot_token is None:
            bot_token = get_config().kakaowork_bot_token

        if not bot_token or not conversation_id:
            logger.warning(
                f"[KAKAOWORK_NOTIFIER] Bot token o conversation_id non configurati - "
                f"impossibile inviare messaggio"
            )
            return False

        headers = {"Authorization": f"Bearer {bot_token}"}
        payload = {
            "conversation_id": conversation_id,
            "text": message
        }

        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(KAKAOWORK_SEND_URL, json=payload, headers=headers)

            if response.status_code == 200:
                result = response.json()
                if result.get("success"):
                    logger.info(f"[KAKAOWORK_NOTIFIER] Messaggio inviato con successo a {conversation_id}")
                    return True
                else:
                    error_desc = (result.get("error") or {}).get("message", "Unknown error")
                    logger.warning(f"[KAKAOWORK_NOTIFIER] Errore API KakaoWork: {error_desc}")
                    return False
            else:
                logger.warning(
                    f"[KAKAOWORK_NOTIFIER] Errore HTTP {response.status_code}: {response.text}"
                )
                return False

    except Exception as e:
        logger.error(
            f"[KAKAOWORK_NOTIFIER] Errore invio messaggio KakaoWork a {conversation_id}: {e}",
            exc_info=True
        )
        return False


class KakaoWorkNotifier:
    """Notifier best-effort verso la chat di controllo configurata."""

    def __init__(self, conversation_id: Optional[str] = None, bot_token: Optional[str] = None):
        config = get_config()
        self.conversation_id = conversation_id or config.kakaowork_check_conversation_id
        self.bot_token = bot_token or config.kakaowork_bot_token

    async def notify(self, message: str) -> bool:
        return await send_kakaowork_message(self.conversation_id, message, bot_token=self.bot_token)
