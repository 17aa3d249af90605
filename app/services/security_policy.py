"""Security policy checks for tool definitions.

Runs twice per tool: when a definition is validated (register/update) and
again at dispatch time against the definition loaded from the store.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from app.infra.config import config
from app.infra.error_handler import SecurityViolationError
from app.models.tool import ToolDefinition, DEFAULT_MAX_TIMEOUT_MS

logger = logging.getLogger(__name__)

# Case-insensitive substrings that may not appear in a parameter name
FORBIDDEN_PARAMETER_SUBSTRINGS = (
    "password",
    "secret",
    "key",
    "token",
    "auth",
    "credential",
    "admin",
    "root",
    "system",
    "debug",
)


@dataclass
class PolicyDecision:
    ok: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "PolicyDecision":
        return cls(ok=True)

    @classmethod
    def deny(cls, reason: str) -> "PolicyDecision":
        return cls(ok=False, reason=reason)


def is_relative_endpoint(endpoint: str) -> bool:
    return endpoint.startswith("/")


def domain_matches(hostname: str, domains: Iterable[str]) -> bool:
    """True if ``hostname`` equals, or is a subdomain of, one of ``domains``."""
    hostname = hostname.lower().rstrip(".")
    for domain in domains:
        domain = domain.lower().strip().rstrip(".")
        if not domain:
            continue
        if hostname == domain or hostname.endswith("." + domain):
            return True
    return False


def check_domain(
    endpoint: str,
    allowed_domains: Optional[List[str]] = None,
    base_domains: Optional[List[str]] = None,
) -> PolicyDecision:
    """
    Check an endpoint against the platform allow-list and the tool's own list.

    Relative paths are internal routes and bypass domain checks. An absolute URL
    must be covered by the platform list (``base_domains``, default
    GLOBAL_ALLOWED_DOMAINS) and, when the tool narrows it, by ``allowed_domains``.
    """
    if is_relative_endpoint(endpoint):
        return PolicyDecision.allow()

    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return PolicyDecision.deny(f"Invalid endpoint URL: {endpoint}")

    hostname = parsed.hostname
    platform_domains = config.GLOBAL_ALLOWED_DOMAINS if base_domains is None else base_domains
    if not domain_matches(hostname, platform_domains):
        return PolicyDecision.deny(f"Domain {hostname} is not in the allowed domains list")

    if allowed_domains and not domain_matches(hostname, allowed_domains):
        return PolicyDecision.deny(f"Domain {hostname} is not in the tool's allowed domains")

    return PolicyDecision.allow()


def find_forbidden_params(property_names: Iterable[str]) -> List[str]:
    offending = []
    for name in property_names:
        lowered = name.lower()
        if any(fragment in lowered for fragment in FORBIDDEN_PARAMETER_SUBSTRINGS):
            offending.append(name)
    return offending


def check_forbidden_params(property_names: Iterable[str]) -> PolicyDecision:
    offending = find_forbidden_params(property_names)
    if offending:
        return PolicyDecision.deny(f"Forbidden parameter names: {', '.join(offending)}")
    return PolicyDecision.allow()


def check_timeout(timeout_ms: int, max_timeout_ms: Optional[int] = None) -> PolicyDecision:
    ceiling = max_timeout_ms or DEFAULT_MAX_TIMEOUT_MS
    if timeout_ms > ceiling:
        return PolicyDecision.deny(f"Timeout {timeout_ms}ms exceeds maximum allowed {ceiling}ms")
    return PolicyDecision.allow()


def evaluate_tool_policy(tool: ToolDefinition) -> List[str]:
    """Run every policy check and return the denial reasons (empty when compliant)."""
    decisions = [
        check_domain(tool.config.endpoint, tool.security.allowed_domains),
        check_forbidden_params(tool.parameters.properties.keys()),
        check_timeout(tool.config.timeout_ms, tool.security.max_timeout_ms),
    ]
    return [decision.reason for decision in decisions if not decision.ok]


def enforce_tool_policy(tool: ToolDefinition) -> None:
    """
    Raises:
        SecurityViolationError: If any policy check fails
    """
    reasons = evaluate_tool_policy(tool)
    if reasons:
        logger.warning(
            f"Security policy violation for tool {tool.name}: {reasons}",
            extra={"tenant_id": tool.tenant_id, "tool_name": tool.name},
        )
        raise SecurityViolationError("; ".join(reasons))
