"""
Device fingerprinting.

The fingerprint is `sha256("<user-agent>|<subnet>")` where the subnet is the
first two octets of an IPv4 address (or the first two groups of an IPv6
address). It only deduplicates sessions per device; it is trivially spoofed
and two devices behind the same /16 with the same browser collide. Do not use
it as a security control.
"""

from __future__ import annotations

import hashlib
import ipaddress

UNKNOWN_SUBNET = "unknown"


def ip_subnet(ip: str | None) -> str:
    if not ip:
        return UNKNOWN_SUBNET
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return UNKNOWN_SUBNET
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    if isinstance(addr, ipaddress.IPv4Address):
        return ".".join(str(addr).split(".")[:2])
    return ":".join(addr.exploded.split(":")[:2])


def device_fingerprint(user_agent: str | None, ip: str | None) -> str:
    data = f"{user_agent or ''}|{ip_subnet(ip)}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
