"""
PhilSMS gateway client and OTP code helpers.

Delivery failures never raise: send_otp reports them through SmsResult so the
caller can carry on with signup and tell the client whether a text went out.
"""

import logging
import re
import secrets
from dataclasses import dataclass
from typing import Any, Optional

import httpx

log = logging.getLogger("coast2cart.sms")

OTP_MESSAGE = (
    "Your Coast2Cart verification code is: {code}. "
    "Valid for {minutes} minutes. Do not share this code with anyone."
)


@dataclass
class SmsResult:
    success: bool
    message: str
    data: Any = None
    error: Any = None


def generate_otp(length: int = 6) -> str:
    """Return a random numeric code of exactly ``length`` digits, no leading zero."""
    first = str(secrets.randbelow(9) + 1)
    return first + "".join(str(secrets.randbelow(10)) for _ in range(length - 1))


def format_phone_number(phone_number: str) -> str:
    """Local 9XXXXXXXXX numbers get the 63 country prefix the gateway expects."""
    cleaned = re.sub(r"\D", "", phone_number)
    if cleaned.startswith("9") and len(cleaned) == 10:
        return "63" + cleaned
    if cleaned.startswith("0"):
        return "63" + cleaned[1:]
    if cleaned.startswith("63"):
        return cleaned
    return "63" + cleaned


class PhilSmsGateway:
    def __init__(
        self,
        api_url: Optional[str],
        api_key: Optional[str],
        sender_id: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_url = (api_url or "").rstrip("/")
        self.api_key = api_key
        self.sender_id = sender_id
        self.timeout = timeout
        self.transport = transport
        self.is_configured = bool(api_url and api_key and sender_id)
        if not self.is_configured:
            missing = [
                name
                for name, value in (
                    ("PHILSMS_API_URL", api_url),
                    ("PHILSMS_API_KEY", api_key),
                    ("PHILSMS_SENDER_ID", sender_id),
                )
                if not value
            ]
            log.warning("PhilSMS is not configured, missing: %s", ", ".join(missing))

    def send_otp(self, phone_number: str, code: str, ttl_seconds: int = 300) -> SmsResult:
        if not self.is_configured:
            log.info("PhilSMS not configured - OTP for %s would be: %s", phone_number, code)
            return SmsResult(
                success=False,
                message="SMS service not available",
                error="PhilSMS service not configured",
            )
        minutes = max(1, ttl_seconds // 60)
        return self.send(phone_number, OTP_MESSAGE.format(code=code, minutes=minutes))

    def send(self, phone_number: str, message: str) -> SmsResult:
        payload = {
            "recipient": format_phone_number(phone_number),
            "sender_id": self.sender_id,
            "type": "plain",
            "message": message,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(f"{self.api_url}/sms/send", json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.warning("PhilSMS rejected message to %s: %s", phone_number, e.response.text[:200])
            return SmsResult(success=False, message="Failed to send OTP", error=e.response.text)
        except httpx.HTTPError as e:
            log.warning("PhilSMS request failed for %s: %s", phone_number, e)
            return SmsResult(success=False, message="Failed to send OTP", error=str(e))
        try:
            data = response.json()
        except ValueError:
            data = response.text
        return SmsResult(success=True, message="OTP sent successfully", data=data)
