"""Credential masking for request diagnostics."""

from __future__ import annotations


SHORT_CREDENTIAL_NOTICE = "Yes, but probably too short, length is smaller than 8"


def mask_credential(value: str) -> str:
    """Return an indicator of *value* safe for logs and the status page.

    - ``"no"`` when the credential is empty.
    - A fixed notice when it has 8 characters or fewer.
    - Otherwise the first four and last four characters around ``...``.
    """
    credential = (value or "").strip()
    if not credential:
        return "no"
    if len(credential) <= 8:
        return SHORT_CREDENTIAL_NOTICE
    return f"{credential[:4]}...{credential[-4:]}"
