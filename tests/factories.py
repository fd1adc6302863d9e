"""
Shared builders for tests: webhook payloads, signatures and a scripted
Graph API served through httpx.MockTransport.
"""

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

APP_SECRET = "test-app-secret"
VERIFY_TOKEN = "test-verify-token"

TENANT_A = "tenant-a"
TENANT_B = "tenant-b"

PAGE_ID = "1001"
IG_ACCOUNT_ID = "3003"
PHONE_NUMBER_ID = "2002"
WA_CUSTOMER = "15551234567"

ScriptedResponse = Union[Tuple[int, Dict[str, Any]], Tuple[int, Dict[str, Any], Dict[str, str]], type]


class FakeGraph:
    """
    Graph API double.

    Responses are queued per (method, path) where path excludes the API
    version. Each call consumes the next response; the last one repeats.
    Exception classes (httpx.ConnectError, httpx.ReadTimeout, ...) are
    raised instead of answering.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: Dict[Tuple[str, str], List[ScriptedResponse]] = {}

    def add(self, method: str, path: str, *responses: ScriptedResponse) -> "FakeGraph":
        self._routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> List[httpx.Request]:
        return [
            request for request in self.requests
            if (method is None or request.method == method.upper())
            and (path is None or _unversioned(request.url.path) == path)
        ]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, _unversioned(request.url.path)))
        if not queue:
            return httpx.Response(404, json={"error": {"message": "Unknown path", "code": 803}})

        scripted = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(scripted, type) and issubclass(scripted, Exception):
            raise scripted("simulated failure", request=request)

        status_code, body = scripted[0], scripted[1]
        headers = scripted[2] if len(scripted) > 2 else None
        return httpx.Response(status_code, json=body, headers=headers)


def _unversioned(path: str) -> str:
    # /v21.0/me/messages -> /me/messages
    parts = path.split("/", 2)
    return "/" + parts[2] if len(parts) > 2 else path


def request_json(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content)


def graph_error(code: int, subcode: Optional[int] = None, message: str = "error") -> Dict[str, Any]:
    error: Dict[str, Any] = {"message": message, "type": "OAuthException", "code": code}
    if subcode is not None:
        error["error_subcode"] = subcode
    return {"error": error}


# ----------------------------------------------------------------------
# Webhook payloads
# ----------------------------------------------------------------------

def encode(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8")


def sign(body: bytes, secret: str = APP_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def messenger_payload(items: List[Dict[str, Any]], page_id: str = PAGE_ID, envelope: str = "page") -> Dict[str, Any]:
    return {"object": envelope, "entry": [{"id": page_id, "time": 1714557600000, "messaging": items}]}


def messenger_message(
        sender: str,
        mid: str,
        text: str = "hello",
        timestamp: int = 1714557600000,
        page_id: str = PAGE_ID,
        **message_fields: Any
) -> Dict[str, Any]:
    return {
        "sender": {"id": sender},
        "recipient": {"id": page_id},
        "timestamp": timestamp,
        "message": {"mid": mid, "text": text, **message_fields},
    }


def messenger_receipt(
        sender: str,
        kind: str,
        watermark: int,
        mids: Optional[List[str]] = None,
        page_id: str = PAGE_ID
) -> Dict[str, Any]:
    receipt: Dict[str, Any] = {"watermark": watermark}
    if mids is not None:
        receipt["mids"] = mids
    return {"sender": {"id": sender}, "recipient": {"id": page_id}, "timestamp": watermark, kind: receipt}


def whatsapp_payload(value: Dict[str, Any], phone_number_id: str = PHONE_NUMBER_ID) -> Dict[str, Any]:
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "waba-1",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"display_phone_number": "15550000000", "phone_number_id": phone_number_id},
                    **value,
                },
            }],
        }],
    }


def whatsapp_message(
        message_id: str,
        text: str = "hello",
        timestamp: Optional[datetime] = None,
        sender: str = WA_CUSTOMER,
        name: str = "Ann",
        **message_fields: Any
) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "from": sender,
        "id": message_id,
        "timestamp": str(int(timestamp.timestamp())) if timestamp else "1714557600",
        "type": "text",
        "text": {"body": text},
    }
    message.update(message_fields)
    return whatsapp_payload({
        "contacts": [{"profile": {"name": name}, "wa_id": sender}],
        "messages": [message],
    })


def whatsapp_status(
        message_id: str,
        status: str,
        recipient: str = WA_CUSTOMER,
        errors: Optional[List[Dict[str, Any]]] = None
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "id": message_id,
        "status": status,
        "timestamp": "1714557700",
        "recipient_id": recipient,
    }
    if errors:
        entry["errors"] = errors
    return whatsapp_payload({"statuses": [entry]})


def instagram_comment(comment_id: str, author_id: str, text: str, username: str = "ann.ig") -> Dict[str, Any]:
    return {
        "object": "instagram",
        "entry": [{
            "id": IG_ACCOUNT_ID,
            "time": 1714557600,
            "changes": [{
                "field": "comments",
                "value": {
                    "id": comment_id,
                    "text": text,
                    "from": {"id": author_id, "username": username},
                    "media": {"id": "media-1", "media_product_type": "FEED"},
                },
            }],
        }],
    }
