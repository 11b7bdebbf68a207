import hmac
import logging
from typing import Mapping, Optional

from utils.exceptions import MissingSecretError, UnauthorizedError

SECRET_HEADER = "x-community-pot-secret"
BEARER_PREFIX = "Bearer "

logger = logging.getLogger(__name__)


class PayoutPermissions:
    """Shared-secret check guarding the payout trigger."""

    def __init__(self, secret: Optional[str]):
        self.secret = secret

    @staticmethod
    def extract_secret(headers: Mapping[str, str]) -> Optional[str]:
        """Pull the secret from the dedicated header or a bearer token."""
        lowered = {key.lower(): value for key, value in headers.items()}
        header_secret = lowered.get(SECRET_HEADER)
        if header_secret:
            return header_secret
        auth_header = lowered.get("authorization")
        if auth_header and auth_header.startswith(BEARER_PREFIX):
            return auth_header[len(BEARER_PREFIX):]
        return None

    def check_secret(self, provided: Optional[str]) -> None:
        """Raise unless the provided secret matches the configured one."""
        if not self.secret:
            logger.critical("COMMUNITY_POT_PAYOUT_SECRET is not configured")
            raise MissingSecretError("Payout secret is not configured")
        if provided is None or not hmac.compare_digest(
            provided.encode("utf-8"), self.secret.encode("utf-8")
        ):
            logger.warning("Rejected payout trigger with invalid secret")
            raise UnauthorizedError("Invalid payout secret")

    def authorize(self, headers: Mapping[str, str]) -> None:
        """Check the secret carried by request headers."""
        self.check_secret(self.extract_secret(headers))
