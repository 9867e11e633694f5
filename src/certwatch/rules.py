"""Rule compilation and matching (pure, no I/O)."""

import re
from typing import Iterable, List, Sequence

from .errors import InvalidPatternError
from .models import RuleMatch, RuleSet

NO_MATCH = RuleMatch(matched=False)


def normalize_domain(rule: str) -> str:
    """Lower-case a domain rule and drop any wildcard or leading dot."""
    domain = rule.strip().lower()
    if domain.startswith("*."):
        domain = domain[2:]
    return domain.lstrip(".")


def suffix_match(name: str, rule: str) -> bool:
    """
    True if `name` is `rule` or a subdomain of it.

    The label boundary matters: "evilgoogle.com" is not under "google.com".
    """
    return name == rule or name.endswith("." + rule)


def compile_rules(
    domains: Iterable[str],
    patterns: Iterable[str],
    include_precerts: bool = False,
) -> RuleSet:
    """
    Normalize domain rules and compile regex patterns.

    Raises:
        InvalidPatternError: on the first pattern that does not compile
    """
    domain_rules: List[str] = []
    for rule in domains:
        domain = normalize_domain(rule)
        if domain:
            domain_rules.append(domain)

    compiled: List[re.Pattern] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise InvalidPatternError(pattern, str(e)) from e

    return RuleSet(domains=domain_rules, patterns=compiled, include_precerts=include_precerts)


def evaluate(names: Sequence[str], rules: RuleSet) -> RuleMatch:
    """Return the first rule hit over `names`.

    Names are tried in order. For each name the domain rules are tried first,
    then the regex patterns, each in configured order.
    """
    for name in names:
        lowered = name.lower()
        for domain in rules.domains:
            if suffix_match(lowered, domain):
                return RuleMatch(matched=True, name=name, rule=f"domain-{domain}")

        for pattern in rules.patterns:
            if pattern.search(name):
                return RuleMatch(matched=True, name=name, rule=f"pattern-{pattern.pattern}")

    return NO_MATCH
