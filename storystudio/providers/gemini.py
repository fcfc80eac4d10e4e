"""
Shared Gemini REST plumbing: request dispatch and error classification.

All three Gemini capabilities (text, image, speech) talk to the same
`generateContent` endpoint and share the same failure vocabulary.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from storystudio.config import AIConfig
from storystudio.providers.exceptions import (
    ConfigurationError,
    ContentPolicyError,
    ProviderError,
    TransientServiceError,
)

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}
POLICY_MARKERS = ("safety", "blocked", "prohibited", "policy")
CREDENTIAL_MARKERS = ("api key", "api_key", "permission", "credential")
CREDENTIAL_STATUSES = {"PERMISSION_DENIED", "UNAUTHENTICATED"}
BLOCKING_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "IMAGE_SAFETY", "SPII"}


def _error_details(response: httpx.Response) -> Tuple[str, str, List[str]]:
    """Message, `error.status` and every `error.details[].reason` of an error body."""
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return response.text[:500], "", []
    if not isinstance(error, dict):
        return response.text[:500], "", []
    reasons = [
        str(detail.get("reason"))
        for detail in error.get("details") or []
        if isinstance(detail, dict) and detail.get("reason")
    ]
    return error.get("message", response.text[:500]), str(error.get("status") or ""), reasons


def _is_credential_error(lowered: str, status: str, reasons: List[str]) -> bool:
    if status in CREDENTIAL_STATUSES:
        return True
    if any(reason.startswith("API_KEY") for reason in reasons):
        return True
    return any(marker in lowered for marker in CREDENTIAL_MARKERS)


def raise_for_gemini_status(provider: str, response: httpx.Response):
    """
    Translate a non-200 Gemini response into the shared error classes.

    Credential problems are checked before policy wording: a key that is
    "blocked" for the API is a configuration error, not a refusal.
    """
    if response.status_code == 200:
        return

    message, status, reasons = _error_details(response)
    lowered = message.lower()

    if response.status_code in TRANSIENT_STATUS_CODES or "overloaded" in lowered:
        raise TransientServiceError(provider, f"HTTP {response.status_code}: {message}", response.status_code)
    if response.status_code in (400, 401, 403) and _is_credential_error(lowered, status, reasons):
        raise ConfigurationError(f"[{provider}] Credentials rejected: {message}")
    if response.status_code in (400, 403) and any(marker in lowered for marker in POLICY_MARKERS):
        raise ContentPolicyError(provider, message)
    if response.status_code in (401, 403):
        raise ConfigurationError(f"[{provider}] Credentials rejected: {message}")
    raise ProviderError(provider, f"HTTP {response.status_code}: {message}")


def check_blocked(provider: str, data: Dict[str, Any]):
    """Raise ContentPolicyError when a 200 response carries a block verdict."""
    feedback = data.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        raise ContentPolicyError(provider, feedback["blockReason"])

    for candidate in data.get("candidates", []):
        reason = candidate.get("finishReason")
        if reason in BLOCKING_FINISH_REASONS:
            raise ContentPolicyError(provider, reason)


def response_parts(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return []
    return candidates[0].get("content", {}).get("parts", []) or []


class GeminiClient:
    """Thin async wrapper around `models/{model}:generateContent`."""

    def __init__(self, config: AIConfig, provider: str, client: Optional[httpx.AsyncClient] = None):
        if not config.has_google:
            raise ConfigurationError(f"[{provider}] GOOGLE_API_KEY is not configured")
        self.config = config
        self.provider = provider
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    async def generate_content(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.config.api_base_url}/{model}:generateContent"
        try:
            response = await self.client.post(
                url,
                params={"key": self.config.google_api_key},
                json=payload,
            )
        except httpx.TimeoutException as e:
            raise TransientServiceError(self.provider, f"Timeout calling {model}: {e}")
        except httpx.TransportError as e:
            raise TransientServiceError(self.provider, f"Network error calling {model}: {e}")

        raise_for_gemini_status(self.provider, response)
        data = response.json()
        check_blocked(self.provider, data)
        return data

    async def close(self):
        await self.client.aclose()
