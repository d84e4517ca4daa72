"""Input validation utilities for camera network settings.

Provides validation functions for:
- Camera host (IPv4/IPv6 literal or DNS name)

Note on Logging:
    Pure validation functions returning (bool, error_message). The caller
    decides whether a failure is logged or raised.
"""
from __future__ import annotations

import re
from typing import Final

# ============================================================================
# Constants
# ============================================================================

IPV4_PATTERN: Final[re.Pattern[str]] = re.compile(r'^(\d{1,3}\.){3}\d{1,3}$')

IPV6_PATTERN: Final[re.Pattern[str]] = re.compile(r'^([0-9a-fA-F]{0,4}:){2,7}[0-9a-fA-F]{0,4}$')

DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r'^([a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?\.)*'
    r'[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?$'
)
"""RFC 1035 labels separated by dots, 63 chars max per label."""

ValidationResult = tuple[bool, str | None]
"""Validation result: (is_valid, error_message)"""

# ============================================================================
# Host Validation
# ============================================================================

def validate_host(host: str) -> ValidationResult:
    """Validate a camera address.

    Examples:
        >>> validate_host("10.0.0.5")
        (True, None)

        >>> validate_host("cam-01.local")
        (True, None)

        >>> validate_host("10.0.0.300")
        (False, 'Invalid camera address: 10.0.0.300')
    """
    if not host or not isinstance(host, str):
        return False, "Camera address is required"

    host = host.strip()
    if _is_valid_ip(host) or _is_valid_domain(host):
        return True, None

    return False, f"Invalid camera address: {host}"


def _is_valid_ip(ip: str) -> bool:
    if IPV4_PATTERN.match(ip):
        return all(0 <= int(octet) <= 255 for octet in ip.split('.'))
    return bool(IPV6_PATTERN.match(ip))


def _is_valid_domain(domain: str) -> bool:
    if len(domain) > 253:
        return False
    # All-numeric dotted names are malformed IPv4, not domains
    if re.fullmatch(r'[\d.]+', domain):
        return False
    return bool(DOMAIN_PATTERN.match(domain))
