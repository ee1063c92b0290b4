"""
Post-processing for generated plan payloads.

Purchase links pointing at a recognized retailer get the affiliate tracking
parameter appended. Tagging is idempotent: an already-tagged link is
returned unchanged. Other links pass through untouched.
"""

import logging
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

__all__ = ["AffiliatePolicy", "tag_purchase_link", "normalize_plan_payload"]

DEFAULT_AFFILIATE_TAG = "RENOVATR-21"
DEFAULT_AFFILIATE_PARAM = "tag"
DEFAULT_AFFILIATE_DOMAINS = ("amazon.co.uk", "amazon.com")

# Plan sections whose entries may carry a purchase link
LINKED_SECTIONS = ("materials", "tools")


@dataclass(frozen=True)
class AffiliatePolicy:
    """Which retailers get tagged, and with what."""
    tag: str = DEFAULT_AFFILIATE_TAG
    param: str = DEFAULT_AFFILIATE_PARAM
    domains: tuple[str, ...] = field(default=DEFAULT_AFFILIATE_DOMAINS)

    def recognizes(self, host: str) -> bool:
        """True if host is one of the retail domains or a subdomain of one."""
        host = host.lower().rstrip(".")
        return any(host == d or host.endswith("." + d) for d in self.domains)


def tag_purchase_link(link: str | None, policy: AffiliatePolicy) -> str | None:
    """Append the affiliate parameter to a recognized retail link.

    Returns the link unchanged when it is empty, unparseable, not http(s),
    on an unrecognized domain, or already carries our tag.
    """
    if not link or not isinstance(link, str):
        return link

    try:
        parts = urlsplit(link.strip())
        host = parts.hostname or ""
    except ValueError:
        logger.debug(f"[NORMALIZE] Unparseable link left as-is: {link!r}")
        return link

    if parts.scheme not in ("http", "https") or not policy.recognizes(host):
        return link

    params = parse_qsl(parts.query, keep_blank_values=True)
    existing = [value for key, value in params if key == policy.param]

    if existing == [policy.tag]:
        return link

    if not existing:
        suffix = f"{policy.param}={policy.tag}"
        query = f"{parts.query}&{suffix}" if parts.query else suffix
    else:
        # Someone else's tag (or duplicates): replace with exactly one of ours
        params = [(k, v) for k, v in params if k != policy.param]
        params.append((policy.param, policy.tag))
        query = urlencode(params)

    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def normalize_plan_payload(payload: dict, policy: AffiliatePolicy) -> dict:
    """Return a copy of a validated plan payload with purchase links tagged.

    Works on both full generation payloads and partial [UPDATE_PLAN] payloads.
    """
    normalized = dict(payload)
    for section in LINKED_SECTIONS:
        items = payload.get(section)
        if not items:
            continue
        tagged = []
        for item in items:
            item = dict(item)
            if item.get("link"):
                item["link"] = tag_purchase_link(item["link"], policy)
            tagged.append(item)
        normalized[section] = tagged
    return normalized
