"""
Application constants.

Graph API envelope names, error-code families used to classify
send responses, and diagnostic hints shown to tenants.
"""

from typing import Dict, FrozenSet

# Service Information
SERVICE_NAME = "inbox-hub"
API_VERSION = "v1"
API_PREFIX = f"/api/{API_VERSION}"

# Webhook headers
SIGNATURE_HEADER = "X-Hub-Signature-256"
SIGNATURE_PREFIX = "sha256="

# Webhook envelope "object" values per platform
ENVELOPE_OBJECT_PAGE = "page"
ENVELOPE_OBJECT_INSTAGRAM = "instagram"
ENVELOPE_OBJECT_WHATSAPP = "whatsapp_business_account"

# Graph API
WHATSAPP_MESSAGING_PRODUCT = "whatsapp"
PROFILE_FIELDS_USER = "id,name,first_name,last_name,profile_pic"
PROFILE_FIELDS_PAGE = "id,name"
PROFILE_FIELDS_INSTAGRAM = "id,username,name"
PROFILE_FIELDS_WHATSAPP = "verified_name,code_verification_status,display_phone_number,quality_rating"
HISTORY_PAGE_SIZE = 50
MAX_MESSAGE_TEXT_LENGTH = 60000

# Error codes returned in the Graph "error" object.
# Authentication: expired/invalid session, API session failure.
AUTH_ERROR_CODES: FrozenSet[int] = frozenset({102, 190})
# Subcodes of 190 meaning the user or app revoked access.
REVOKED_ERROR_SUBCODES: FrozenSet[int] = frozenset({458, 460})

# Throttling: app/user/page/account limits and WhatsApp pair/spam rate limits.
RATE_LIMIT_ERROR_CODES: FrozenSet[int] = frozenset({4, 17, 32, 613, 130429, 131048, 131056})

# Messaging window: WhatsApp re-engagement, Messenger outside-window subcode.
WINDOW_ERROR_CODES: FrozenSet[int] = frozenset({131047, 80007})
WINDOW_ERROR_SUBCODES: FrozenSet[int] = frozenset({2018278})

# HTTP statuses treated as transient regardless of error body.
RETRYABLE_HTTP_STATUSES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})

DIAGNOSTIC_HINTS: Dict[int, str] = {
    190: "Access token expired or invalidated; reconnect the channel.",
    102: "Session is no longer valid; reconnect the channel.",
    100: "Invalid parameter or missing permission for this asset.",
    10: "Permission denied; check the app has the messaging permissions.",
    80007: "Outside the 24-hour messaging window; use an approved template.",
    131047: "More than 24 hours since the customer's last message; use an approved template.",
    131026: "Recipient cannot receive messages (not on WhatsApp or outdated client).",
    131030: "Recipient phone number is not in the allowed list for a test number.",
    131031: "The business account has been locked or the number is invalid.",
    131056: "Too many messages to this recipient in a short time.",
    130429: "Cloud API throughput limit reached.",
}
