import requests
import logging
from typing import Optional, List, Dict, Any, Tuple
from dataclasses import dataclass
from django.conf import settings

logger = logging.getLogger(__name__)


@dataclass
class TelegramConfig:
    bot_token: str
    chat_id: str
    timeout: int = 10
    max_retries: int = 3


class TelegramService:

    BASE_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, config: TelegramConfig):
        self.config = config
        self._url = self.BASE_URL.format(token=config.bot_token)

    def send_message(
        self,
        text: str,
        parse_mode: str = "HTML",
        disable_notification: bool = False
    ) -> Tuple[bool, Optional[str]]:
        payload = {
            "chat_id": self.config.chat_id,
            "text": text,
            "parse_mode": parse_mode,
            "disable_notification": disable_notification
        }

        error_msg = None
        for attempt in range(1, self.config.max_retries + 1):
            try:
                response = requests.post(
                    self._url,
                    json=payload,
                    timeout=self.config.timeout
                )

                if response.status_code == 200:
                    logger.info("Telegram message sent")
                    return True, None

                error_msg = f"Telegram API error: {response.status_code} - {response.text}"
                logger.warning(f"Attempt {attempt}/{self.config.max_retries}: {error_msg}")

            except requests.exceptions.Timeout:
                error_msg = "Request timed out"
                logger.warning(f"Attempt {attempt}/{self.config.max_retries}: {error_msg}")

            except requests.exceptions.RequestException as e:
                error_msg = f"Request failed: {e}"
                logger.warning(f"Attempt {attempt}/{self.config.max_retries}: {error_msg}")

        logger.error(f"Failed to send Telegram message after {self.config.max_retries} attempts")
        return False, error_msg


def get_telegram_service(config: Optional[TelegramConfig] = None) -> Optional[TelegramService]:
    """None when no bot is configured."""
    if config is None:
        token = getattr(settings, "TELEGRAM_BOT_TOKEN", "")
        chat_id = getattr(settings, "TELEGRAM_CHAT_ID", "")
        if not token or not chat_id:
            return None
        config = TelegramConfig(bot_token=token, chat_id=chat_id)
    return TelegramService(config)


def format_low_stock_message(item: Dict[str, Any]) -> str:
    return (
        "⚠️ <b>Low stock</b>\n"
        f"{item['name']} ({item['sku'] or '-'})\n"
        f"Current: {item['current_stock']} {item['unit']}\n"
        f"Threshold: {item['threshold']} {item['unit']}\n"
        f"Suggested order: {item['suggested_order_quantity']} {item['unit']}"
    )


def notify_consistency_error(drifts: List[Dict[str, Any]]) -> bool:
    service = get_telegram_service()
    if service is None:
        logger.warning("Telegram is not configured, consistency alert not sent")
        return False

    lines = ["🚨 <b>Stock drift detected</b>"]
    for drift in drifts:
        lines.append(
            f"{drift['name']}: counter {drift['current_stock']}, "
            f"lots {drift['lot_total']}, shortfall {drift['shortfall']}"
        )

    sent, _ = service.send_message("\n".join(lines))
    return sent
