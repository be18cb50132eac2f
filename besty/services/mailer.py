# besty/services/mailer.py
from urllib.parse import urlencode
from loguru import logger


class LoggingMailer:
    """
    Stand-in for a transactional email provider.
    Builds the magic link and writes it to the log instead of sending it.
    """

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")

    def magic_link(self, token: str) -> str:
        return f"{self.base_url}/?{urlencode({'token': token})}"

    async def send_magic_link(self, email: str, token: str) -> bool:
        link = self.magic_link(token)
        logger.info(f"Magic link for {email}: {link}")
        return True
