"""Threat-intelligence oracles consumed at the engine boundary."""
import os
import re
from typing import Iterable, Optional, Protocol


class MaliciousIpOracle(Protocol):
    def is_known_malicious_ip(self, ip: str) -> bool:
        ...


class UserAgentOracle(Protocol):
    def is_suspicious_user_agent(self, user_agent: str) -> bool:
        ...


# Placeholder entries until a threat feed is wired in
DEFAULT_MALICIOUS_IPS = frozenset({"192.168.1.100", "10.0.0.100", "172.16.0.100"})

SUSPICIOUS_USER_AGENT = re.compile(
    r"bot|crawler|spider|scraper|curl|wget|python|java",
    re.IGNORECASE
)


def _ips_from_env() -> frozenset:
    raw = os.getenv("RISKWATCH_MALICIOUS_IPS", "")
    return frozenset(ip.strip() for ip in raw.split(",") if ip.strip())


class StaticThreatIntel:
    """Membership oracle over a fixed IP set plus the user-agent regex."""

    def __init__(self, malicious_ips: Optional[Iterable[str]] = None):
        if malicious_ips is None:
            malicious_ips = DEFAULT_MALICIOUS_IPS | _ips_from_env()
        self._malicious_ips = frozenset(malicious_ips)

    def is_known_malicious_ip(self, ip: str) -> bool:
        return ip in self._malicious_ips

    def is_suspicious_user_agent(self, user_agent: str) -> bool:
        return bool(SUSPICIOUS_USER_AGENT.search(user_agent))
