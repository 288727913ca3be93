"""Prefix and domain matching for URL triggers. No regex or wildcards."""

from __future__ import annotations

from dataclasses import dataclass, field
from urllib.parse import urlparse

from replaykit.triggers.types import UrlMatchKind, UrlMatchRule


@dataclass
class CompiledUrlRules:
    url_prefixes: list[str] = field(default_factory=list)
    domains: list[str] = field(default_factory=list)
    path_prefixes: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.url_prefixes or self.domains or self.path_prefixes)


def compile_rules(rules: list[UrlMatchRule]) -> CompiledUrlRules:
    """Normalize rules once; blank values are dropped."""
    compiled = CompiledUrlRules()
    for rule in rules:
        raw = rule.value.strip()
        if not raw:
            continue
        if rule.kind == UrlMatchKind.URL:
            compiled.url_prefixes.append(raw)
        elif rule.kind == UrlMatchKind.DOMAIN:
            domain = raw.lower().strip(".")
            if domain:
                compiled.domains.append(domain)
        elif rule.kind == UrlMatchKind.PATH:
            compiled.path_prefixes.append(raw if raw.startswith("/") else f"/{raw}")
    return compiled


def hostname_matches(hostname: str, domain: str) -> bool:
    # "notexample.com" must not match "example.com"
    return hostname == domain or hostname.endswith(f".{domain}")


def matches(compiled: CompiledUrlRules, url: str) -> bool:
    if any(url.startswith(p) for p in compiled.url_prefixes):
        return True
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    hostname = (parsed.hostname or "").lower()
    if hostname and any(hostname_matches(hostname, d) for d in compiled.domains):
        return True
    path = parsed.path or "/"
    return any(path.startswith(p) for p in compiled.path_prefixes)
