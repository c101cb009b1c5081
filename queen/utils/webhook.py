"""
Webhook utilities for GitHub webhook processing.

This module provides functions for validating GitHub webhook signatures
and extracting the routing context (repository, sender, target number)
from webhook payloads.
"""

import hashlib
import hmac
from typing import Optional


def validate_github_signature(
    payload_body: bytes,
    signature_header: str,
    secret: str,
) -> bool:
    """
    Validate GitHub webhook signature using HMAC SHA-256.

    GitHub sends webhooks with an X-Hub-Signature-256 header containing
    an HMAC signature of the payload. This function verifies that signature.

    Args:
        payload_body: Raw webhook payload body as bytes
        signature_header: Value of X-Hub-Signature-256 header
        secret: Webhook secret configured in GitHub

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature_header:
        return False

    # GitHub signature format: "sha256=<hex_digest>"
    if not signature_header.startswith("sha256="):
        return False

    expected_signature = signature_header.split("=", 1)[1]

    mac = hmac.new(
        secret.encode("utf-8"),
        msg=payload_body,
        digestmod=hashlib.sha256,
    )
    computed_signature = mac.hexdigest()

    return hmac.compare_digest(computed_signature, expected_signature)


def extract_event_context(event: Optional[str], payload: dict) -> Optional[dict]:
    """
    Extract routing context from a GitHub webhook payload.

    Args:
        event: Value of the X-GitHub-Event header
        payload: GitHub webhook payload as dictionary

    Returns:
        Dictionary with the event, action, repository and target number,
        or None if the payload carries no repository.

    Example:
        >>> extract_event_context("issues", {"action": "opened",
        ...     "issue": {"number": 42},
        ...     "repository": {"full_name": "hivemoot/colony"}})
        {'event': 'issues', 'action': 'opened', 'repository': 'hivemoot/colony', ...}
    """
    repository = payload.get("repository") or {}
    full_name = repository.get("full_name")
    if not full_name:
        return None

    target = payload.get("pull_request") or payload.get("issue") or {}

    return {
        "event": event,
        "action": payload.get("action"),
        "repository": full_name,
        "number": target.get("number"),
        "sender": (payload.get("sender") or {}).get("login"),
        "installation_id": (payload.get("installation") or {}).get("id"),
    }
