"""Tenant classification for synced messages.

A classifier maps source header metadata to a tenant tag. The sync stage
takes any ``Callable[[Mapping[str, str]], str]``; ``classify_tenant`` is the
default used in production.
"""

from __future__ import annotations

from email.utils import getaddresses
from typing import Callable, Mapping

DEFAULT_TENANT = "General"

_SHARED_MAILBOX_PREFIXES = ("support@", "info@", "hello@")

TenantClassifier = Callable[[Mapping[str, str]], str]


def classify_tenant(headers: Mapping[str, str]) -> str:
    """Derive the tenant from the first shared-mailbox recipient.

    ``support@acme.com`` becomes ``Acme``; anything else is ``General``.
    """
    for _, address in getaddresses([headers.get("to") or ""]):
        address = address.strip().lower()
        if not address.startswith(_SHARED_MAILBOX_PREFIXES):
            continue
        domain = address.split("@", 1)[1].split(".", 1)[0]
        if domain:
            return domain[:1].upper() + domain[1:]
    return DEFAULT_TENANT
