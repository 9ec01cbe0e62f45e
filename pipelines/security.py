"""SSRF protection for outbound fetches.

Captured URLs come from users, so every fetch target (including redirects
discovered by scrapers, e.g. derived PDF URLs and thread links) is checked
against private ranges, internal service ports and cloud metadata hosts.
"""

import ipaddress
import logging
import socket
from typing import Optional, Set, Tuple
from urllib.parse import urlparse

from services.shared.errors import SSRFError

logger = logging.getLogger(__name__)

PRIVATE_IP_RANGES = [
    ipaddress.ip_network('10.0.0.0/8'),
    ipaddress.ip_network('172.16.0.0/12'),
    ipaddress.ip_network('192.168.0.0/16'),
    ipaddress.ip_network('127.0.0.0/8'),
    ipaddress.ip_network('169.254.0.0/16'),
    ipaddress.ip_network('0.0.0.0/8'),
    ipaddress.ip_network('224.0.0.0/4'),
    ipaddress.ip_network('240.0.0.0/4'),
    ipaddress.ip_network('::1/128'),
    ipaddress.ip_network('fc00::/7'),
    ipaddress.ip_network('fe80::/10'),
]

BLOCKED_PORTS = {22, 23, 25, 53, 110, 143, 1433, 1521, 3306, 3389, 5432, 6379, 9200, 27017}

ALLOWED_SCHEMES = {'http', 'https'}

LOCALHOST_NAMES = {'localhost', 'localhost.localdomain', '0', 'local'}

METADATA_HOSTS = {
    'metadata',
    'metadata.google.internal',
    '169.254.169.254',
    'metadata.azure.com',
}


def is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is in a private or reserved range.

    Unparseable addresses count as private.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return True
    return any(ip in network for network in PRIVATE_IP_RANGES)


def resolve_hostname(hostname: str) -> Set[str]:
    """Resolve a hostname and refuse it if any address is private.

    Raises:
        SSRFError: If resolution fails or yields a private address
    """
    try:
        addr_info = socket.getaddrinfo(hostname, None)
    except socket.gaierror as e:
        raise SSRFError(f"Failed to resolve hostname {hostname}: {e}")

    ips = {info[4][0] for info in addr_info}
    private_ips = sorted(ip for ip in ips if is_private_ip(ip))
    if private_ips:
        raise SSRFError(f"Hostname {hostname} resolves to private IP(s): {private_ips}")
    return ips


def validate_url_security(url: str, resolve: bool = True) -> Tuple[bool, Optional[str]]:
    """Validate a fetch target.

    Args:
        url: URL to validate
        resolve: Resolve hostnames and check the resulting addresses

    Returns:
        Tuple of (is_safe, error_message)
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return False, f"Scheme '{parsed.scheme}' not allowed"

    hostname = (parsed.hostname or '').lower()
    if not hostname:
        return False, "URL must have a valid hostname"
    if hostname in LOCALHOST_NAMES:
        return False, f"Localhost hostname '{hostname}' is blocked"
    if hostname in METADATA_HOSTS:
        return False, f"Metadata host '{hostname}' is blocked"

    try:
        port = parsed.port
    except ValueError:
        return False, "Invalid port"
    if port and port in BLOCKED_PORTS:
        return False, f"Port {port} is blocked (internal service port)"

    try:
        ipaddress.ip_address(hostname)
        is_literal_ip = True
    except ValueError:
        is_literal_ip = False

    if is_literal_ip:
        if is_private_ip(hostname):
            return False, f"Private IP address '{hostname}' is blocked"
    elif resolve:
        try:
            resolve_hostname(hostname)
        except SSRFError as e:
            return False, str(e)

    return True, None


def check_url_ssrf(url: str, resolve: bool = True) -> None:
    """Raise :class:`SSRFError` if ``url`` is not a safe fetch target."""
    is_safe, error_msg = validate_url_security(url, resolve=resolve)
    if not is_safe:
        logger.warning(f"SSRF protection blocked URL: {url} - {error_msg}")
        raise SSRFError(f"URL blocked by SSRF protection: {error_msg}", url=url)
