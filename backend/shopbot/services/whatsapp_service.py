# Overview: Outbound WhatsApp Cloud API client and webhook signature checks.

"""
WhatsApp Cloud API Client

Thin synchronous wrapper over the Graph API /messages endpoint using httpx.
One client is attached to the Flask app (app.extensions["whatsapp"]);
tests swap in a recording fake with the same method names.

Every send returns the Graph API JSON (which carries messages[0].id) or
raises WhatsAppError. Callers decide whether to log and continue.
"""

from __future__ import annotations

import hashlib
import hmac

import httpx
from flask import current_app

GRAPH_BASE_URL = "https://graph.facebook.com"


class WhatsAppError(Exception):
    """Raised when the Graph API rejects a request or cannot be reached."""
    pass


def verify_signature(raw_body: bytes, signature_header: str | None, app_secret: str | None) -> bool:
    """
    Check X-Hub-Signature-256 ("sha256=<hex>") against HMAC-SHA256 of the raw body.

    An empty app_secret disables the check (returns True).
    """
    if not app_secret:
        return True
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    presented = signature_header.split("=", 1)[1].strip()
    expected = hmac.new(app_secret.encode("utf-8"), raw_body or b"", hashlib.sha256).hexdigest()
    return hmac.compare_digest(presented, expected)


def message_id_from_response(result: dict | None) -> str | None:
    try:
        return (result or {}).get("messages", [{}])[0].get("id")
    except (AttributeError, IndexError):
        return None


class WhatsAppClient:
    def __init__(self, *, token: str, phone_number_id: str, api_version: str = "v19.0", timeout: float = 10.0):
        self.token = token
        self.phone_number_id = phone_number_id
        self.api_version = api_version
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "WhatsAppClient":
        return cls(
            token=config.get("WHATSAPP_TOKEN", ""),
            phone_number_id=config.get("WHATSAPP_PHONE_NUMBER_ID", ""),
            api_version=config.get("WHATSAPP_API_VERSION", "v19.0"),
            timeout=config.get("WHATSAPP_TIMEOUT_SECONDS", 10.0),
        )

    @property
    def base_url(self) -> str:
        return f"{GRAPH_BASE_URL}/{self.api_version}"

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    def _post_message(self, payload: dict) -> dict:
        if not self.token or not self.phone_number_id:
            raise WhatsAppError("WhatsApp credentials are not configured")
        url = f"{self.base_url}/{self.phone_number_id}/messages"
        body = {"messaging_product": "whatsapp", **payload}
        try:
            response = httpx.post(url, json=body, headers=self.headers, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise WhatsAppError(f"WhatsApp request failed: {exc}") from exc
        if response.status_code >= 400:
            raise WhatsAppError(f"WhatsApp API error {response.status_code}: {response.text[:500]}")
        current_app.logger.info("whatsapp send type=%s to=%s status=%s", payload.get("type"), payload.get("to"), response.status_code)
        return response.json()

    def send_text(self, to: str, body: str) -> dict:
        return self._post_message({
            "to": to,
            "type": "text",
            "text": {"body": body, "preview_url": False},
        })

    def send_list(self, to: str, *, header: str | None, body: str, footer: str | None,
                  button: str, sections: list[dict]) -> dict:
        interactive: dict = {
            "type": "list",
            "body": {"text": body},
            "action": {"button": button, "sections": sections},
        }
        if header:
            interactive["header"] = {"type": "text", "text": header}
        if footer:
            interactive["footer"] = {"text": footer}
        return self._post_message({"to": to, "type": "interactive", "interactive": interactive})

    def send_buttons(self, to: str, *, body: str, buttons: list[dict]) -> dict:
        interactive = {
            "type": "button",
            "body": {"text": body},
            "action": {
                "buttons": [
                    {"type": "reply", "reply": {"id": b["id"], "title": b["title"]}}
                    for b in buttons
                ]
            },
        }
        return self._post_message({"to": to, "type": "interactive", "interactive": interactive})

    def send_template(self, to: str, *, name: str, language: str = "en", components: list | None = None) -> dict:
        template: dict = {"name": name, "language": {"code": language}}
        if components:
            template["components"] = components
        return self._post_message({"to": to, "type": "template", "template": template})

    def mark_read(self, message_id: str) -> dict:
        return self._post_message({"status": "read", "message_id": message_id})

    def _get(self, url: str) -> httpx.Response:
        if not self.token:
            raise WhatsAppError("WhatsApp credentials are not configured")
        try:
            response = httpx.get(url, headers={"Authorization": f"Bearer {self.token}"}, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise WhatsAppError(f"WhatsApp request failed: {exc}") from exc
        if response.status_code >= 400:
            raise WhatsAppError(f"WhatsApp API error {response.status_code}: {response.text[:500]}")
        return response

    def download_media(self, media_id: str) -> tuple[bytes, str]:
        """
        Fetch an inbound attachment (e.g. a payment screenshot).

        Two calls: media metadata (url + mime_type), then the file itself.
        Returns (content, content_type).
        """
        meta = self._get(f"{self.base_url}/{media_id}").json()
        url = meta.get("url")
        if not url:
            raise WhatsAppError("Media URL missing from WhatsApp response")
        content_type = meta.get("mime_type") or "application/octet-stream"
        return self._get(url).content, content_type


def get_client():
    """The app-bound client (a fake under tests)."""
    return current_app.extensions["whatsapp"]
