"""Robots.txt rule engine: parsing, precedence matching, compact serialization."""

from __future__ import annotations

import re
from dataclasses import dataclass, field


DEFAULT_BUCKET = "*"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class RobotsFormatError(ValueError):
    """Raised when a serialized rule record is not a usable pattern."""


@dataclass(frozen=True, slots=True)
class PathRule:
    """One compiled Allow/Disallow directive."""

    pattern: str
    has_wildcard: bool
    slash_count: int
    pattern_length: int
    allowed: bool
    regex: re.Pattern[str] = field(repr=False, compare=False)

    @classmethod
    def from_directive(cls, path: str, allowed: bool) -> PathRule:
        """Build a rule from the raw value of an Allow/Disallow line."""
        end_anchor = path.endswith("$")
        if end_anchor:
            path = path[:-1]

        body = re.escape(path).replace(r"\*", ".*")
        if end_anchor:
            body += "$"

        return cls._build("^" + body, allowed)

    @classmethod
    def from_pattern(cls, pattern: str, allowed: bool) -> PathRule:
        """Rebuild a rule from its serialized pattern."""
        return cls._build(pattern, allowed)

    @classmethod
    def _build(cls, pattern: str, allowed: bool) -> PathRule:
        try:
            regex = re.compile(pattern)
        except re.error as exc:
            raise RobotsFormatError(f"invalid robots pattern {pattern!r}: {exc}") from exc

        body = pattern[1:] if pattern.startswith("^") else pattern
        return cls(
            pattern=pattern,
            has_wildcard=".*" in body,
            slash_count=body.count("/"),
            pattern_length=len(body),
            allowed=allowed,
            regex=regex,
        )

    def matches(self, path: str) -> bool:
        return self.regex.match(path) is not None


@dataclass(slots=True)
class RuleSet:
    """Parsed robots.txt: ordered rules per lowercase user-agent token."""

    by_user_agent: dict[str, tuple[PathRule, ...]] = field(default_factory=dict)
    sitemap: str | None = None
    sitemaps: list[str] = field(default_factory=list)


def sort_rules(rules: list[PathRule]) -> tuple[PathRule, ...]:
    """Order rules most-specific-first; allow wins a full tie."""
    return tuple(
        sorted(
            rules,
            key=lambda rule: (-rule.slash_count, -rule.pattern_length, not rule.allowed),
        )
    )


def _clean_lines(raw: str) -> list[str]:
    """Split into lines, dropping blanks and comments."""
    cleaned: list[str] = []
    for line in _LINE_BREAK.split(raw):
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        comment = line.find("#")
        if comment != -1:
            line = line[:comment].rstrip()

        cleaned.append(line)
    return cleaned


def _tokenize(lines: list[str]) -> list[tuple[str, str]]:
    """Turn cleaned lines into (lowercase key, raw value) pairs."""
    tokens: list[tuple[str, str]] = []
    for line in lines:
        key, colon, value = line.partition(":")
        if not colon:
            continue

        value = value.lstrip(" \t")
        if not value:
            continue

        tokens.append((key.strip().lower(), value))
    return tokens


def parse(raw: str) -> RuleSet:
    """Parse robots.txt text into a RuleSet."""
    out = RuleSet()
    current_agents: list[str] = []
    current_rules: list[PathRule] = []

    def commit() -> None:
        ordered = sort_rules(current_rules)
        for agent in current_agents:
            out.by_user_agent[agent] = ordered

    for key, value in _tokenize(_clean_lines(raw)):
        if key == "user-agent":
            if not current_rules:
                # Several agents sharing one group
                current_agents.append(value.lower())
            else:
                commit()
                current_agents = [value.lower()]
                current_rules = []
        elif key == "sitemap":
            # Sitemap sits outside any group and closes the open one
            commit()
            current_agents = []
            current_rules = []
            out.sitemap = value
            out.sitemaps.append(value)
        elif key in ("allow", "disallow"):
            if not current_agents or not value.startswith("/"):
                continue
            current_rules.append(PathRule.from_directive(value, allowed=key == "allow"))

    commit()
    return out


def _select_bucket(rule_set: RuleSet, user_agent: str) -> tuple[PathRule, ...] | None:
    """Longest bucket name that prefixes the user agent, else the * bucket."""
    user_agent = user_agent.lower()

    rules_key = ""
    for agent in rule_set.by_user_agent:
        if user_agent.startswith(agent) and len(agent) > len(rules_key):
            rules_key = agent

    return rule_set.by_user_agent.get(rules_key or DEFAULT_BUCKET)


def check_path(rule_set: RuleSet, user_agent: str, path: str) -> bool:
    """Return True when user_agent may fetch path."""
    rules = _select_bucket(rule_set, user_agent)
    if not rules:
        return True

    for rule in rules:
        if rule.matches(path):
            return rule.allowed

    return True


def serialize_rules(rule_set: RuleSet, user_agent: str) -> str | None:
    """Flatten the bucket for user_agent into newline-joined <flag><pattern> records."""
    rules = _select_bucket(rule_set, user_agent)
    if rules is None:
        return None

    return "\n".join(("1" if rule.allowed else "0") + rule.pattern for rule in rules)


def deserialize_rules(serialized: str) -> RuleSet:
    """Rebuild a single * bucket from serialized records, keeping their order."""
    rules: list[PathRule] = []
    for record in serialized.split("\n"):
        if not record:
            continue
        rules.append(PathRule.from_pattern(record[1:], allowed=record[0] != "0"))

    return RuleSet(by_user_agent={DEFAULT_BUCKET: tuple(rules)})


def check_path_from_serialized(serialized: str, path: str) -> bool:
    """Evaluate path against cached, serialized rules."""
    return check_path(deserialize_rules(serialized), DEFAULT_BUCKET, path)
