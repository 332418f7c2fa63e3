"""
Rule-driven metadata normalization.

Pipeline for every observed track:
1. Filter rules decide whether the track is normalized at all
   (rejected tracks come back untouched).
2. Replacement rules rewrite title/artist/album in list order.
3. Multi-artist strings are split into a primary artist, keeping the
   unsplit string as album artist.

Invalid regular expressions never abort the pipeline; the offending
rule simply contributes nothing.
"""

from __future__ import annotations
import json
import logging
import os
import re
import threading
import uuid
from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from functools import lru_cache

from state import Track

log = logging.getLogger("rules")


class RuleUseCase(str, Enum):
    DISPLAY = "display"
    SCROBBLE = "scrobble"
    BOTH = "both"


class MatchType(str, Enum):
    REGEX = "regex"
    EXACT = "exact"
    CONTAINS = "contains"


class FilterLogic(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"
    INCLUDE_ANY = "includeAny"
    EXCLUDE_ANY = "excludeAny"
    ALL = "all"
    NONE = "none"


@dataclass
class ReplacementRule:
    pattern: str
    replacement: str
    enabled: bool = True
    target_fields: list[str] = field(default_factory=lambda: ["title", "artist"])
    use_case: RuleUseCase = RuleUseCase.BOTH
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def applies_to(self, use_case: RuleUseCase | None) -> bool:
        if use_case is None or self.use_case == RuleUseCase.BOTH:
            return True
        return self.use_case == use_case


@dataclass
class FilterRule:
    pattern: str
    enabled: bool = True
    match_type: MatchType = MatchType.REGEX
    logic: FilterLogic = FilterLogic.EXCLUDE
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern | None:
    """Compiled form of a rule pattern, or None when it does not compile."""
    try:
        return re.compile(pattern)
    except re.error as e:
        log.warning("Ignoring invalid rule pattern %r: %s", pattern, e)
        return None


# $1, $$1, $N, \1, \g<name>: back-references are not supported in replacements
_BACKREF_RE = re.compile(r"\$+(?:\d+|N)|\\\d+|\\g<[^>]*>")


def literal_replacement(template: str) -> str:
    return _BACKREF_RE.sub("", template)


def default_replacement_rules() -> list[ReplacementRule]:
    radio_suffixes = (
        r"\s*([—–])\s*Radio\s*$",
        r"\s*([—–])\s*电台\s*$",
        r"\s*([—–])\s*ラジオ\s*$",
    )
    rules = [ReplacementRule(p, "", target_fields=["title"]) for p in radio_suffixes]
    rules += [ReplacementRule(p, "", target_fields=["album"]) for p in radio_suffixes]
    rules.append(ReplacementRule(r"\s*[—–]\s*", " - ", target_fields=["album"]))
    rules.append(ReplacementRule(";", ", ", target_fields=["artist"]))
    return rules


# -------------------------
# Artist splitting
# -------------------------
_SKIP_BEFORE_A = {"the", "a", "an", "in", "on", "at", "for", "to", "with",
                  "from", "by", "as", "of", "this", "that"}
_SKIP_AFTER_A = {"the", "a", "an", "one", "few", "little", "lot", "bit",
                 "great", "good", "bad", "new", "old"}

_AND_RE = re.compile(r"\band\b", re.IGNORECASE)
_A_RE = re.compile(r"(?<!\S)a(?!\S)", re.IGNORECASE)
_SEPARATOR_RUN_RE = re.compile(r"\s*(?:,\s*)+")


def _should_split_on_a(text: str, start: int, end: int) -> bool:
    before = text[:start].split()
    after = text[end:].split()
    if not before or not after:
        return False
    prev_word = before[-1].lower()
    next_word = after[0].lower()
    # right after a separator "a" is an article opening the next name
    if prev_word.endswith(","):
        return False
    return prev_word not in _SKIP_BEFORE_A and next_word not in _SKIP_AFTER_A


def normalize_artist_separators(artist: str) -> str:
    """Rewrite every multi-artist separator as ", " and tidy the result."""
    result = artist.replace("&", ", ").replace(" / ", ", ")
    result = _AND_RE.sub(", ", result)
    result = _A_RE.sub(
        lambda m: ", " if _should_split_on_a(m.string, m.start(), m.end()) else m.group(0),
        result,
    )
    # a bare comma belongs to the name ("Tyler,The Creator")
    result = _SEPARATOR_RUN_RE.sub(lambda m: m.group(0) if m.group(0) == "," else ", ", result)
    return result.strip(", ")


def split_artists(track: Track) -> Track:
    components = normalize_artist_separators(track.artist).split(", ")
    if len(components) <= 1:
        return track
    return replace(
        track,
        artist=components[0].strip(),
        album_artist=track.album_artist or track.artist,
    )


# -------------------------
# Processor
# -------------------------
class MetadataProcessor:
    """Holds both rule collections and runs the normalization pipeline.

    Rule CRUD may come from another thread than `process`, so the
    collections are swapped under a lock and `process` works on a copy.
    """

    def __init__(self, replacement_rules: list[ReplacementRule] | None = None,
                 filter_rules: list[FilterRule] | None = None):
        self._lock = threading.Lock()
        self.replacement_rules: list[ReplacementRule] = (
            list(replacement_rules) if replacement_rules is not None else default_replacement_rules()
        )
        self.filter_rules: list[FilterRule] = list(filter_rules or [])

    # -------- pipeline --------
    def process(self, track: Track, use_case: RuleUseCase | None = None) -> Track:
        with self._lock:
            replacements = list(self.replacement_rules)
            filters = list(self.filter_rules)

        if not self.matches_filters(track, filters):
            log.debug("Filtered out, leaving as-is: %s", track.display_name())
            return track

        processed = self.apply_replacements(track, replacements, use_case)
        return split_artists(processed)

    def matches_filters(self, track: Track, rules: list[FilterRule] | None = None) -> bool:
        if rules is None:
            rules = self.filter_rules
        active = [r for r in rules if r.enabled]
        if not active:
            return True

        text = track.display_name()
        for rule in active:
            matches = self._check_filter(rule, text)
            if matches is None:
                continue

            if rule.logic == FilterLogic.INCLUDE_ANY:
                if matches:
                    return True
            elif rule.logic in (FilterLogic.INCLUDE, FilterLogic.ALL):
                if not matches:
                    return False
            elif matches:  # exclude, excludeAny, none
                return False
        return True

    @staticmethod
    def _check_filter(rule: FilterRule, text: str) -> bool | None:
        if rule.match_type == MatchType.EXACT:
            return text == rule.pattern
        if rule.match_type == MatchType.CONTAINS:
            return rule.pattern in text
        regex = compile_pattern(rule.pattern)
        if regex is None:
            return None
        return regex.search(text) is not None

    def apply_replacements(self, track: Track, rules: list[ReplacementRule] | None = None,
                           use_case: RuleUseCase | None = None) -> Track:
        if rules is None:
            rules = self.replacement_rules
        values = {"title": track.title, "artist": track.artist, "album": track.album}

        for rule in rules:
            if not rule.enabled or not rule.applies_to(use_case):
                continue
            regex = compile_pattern(rule.pattern)
            if regex is None:
                continue
            template = literal_replacement(rule.replacement)
            for name in rule.target_fields:
                if name not in values or values[name] is None:
                    continue
                values[name] = regex.sub(lambda _m: template, values[name])

        return replace(track, **values)

    # -------- rule CRUD --------
    def add_replacement_rule(self, rule: ReplacementRule) -> None:
        with self._lock:
            self.replacement_rules = self.replacement_rules + [rule]

    def remove_replacement_rule(self, rule_id: str) -> None:
        with self._lock:
            self.replacement_rules = [r for r in self.replacement_rules if r.id != rule_id]

    def update_replacement_rule(self, rule: ReplacementRule) -> None:
        with self._lock:
            self.replacement_rules = [rule if r.id == rule.id else r for r in self.replacement_rules]

    def add_filter_rule(self, rule: FilterRule) -> None:
        with self._lock:
            self.filter_rules = self.filter_rules + [rule]

    def remove_filter_rule(self, rule_id: str) -> None:
        with self._lock:
            self.filter_rules = [r for r in self.filter_rules if r.id != rule_id]

    def update_filter_rule(self, rule: FilterRule) -> None:
        with self._lock:
            self.filter_rules = [rule if r.id == rule.id else r for r in self.filter_rules]

    def list_replacement_rules(self) -> list[ReplacementRule]:
        return list(self.replacement_rules)

    def list_filter_rules(self) -> list[FilterRule]:
        return list(self.filter_rules)

    def reset_to_defaults(self) -> None:
        """Replace the replacement rules with the shipped defaults; filters stay."""
        with self._lock:
            self.replacement_rules = default_replacement_rules()

    # -------- persistence --------
    def save_rules(self, path: str) -> None:
        with self._lock:
            data = {
                "replacement_rules": [asdict(r) for r in self.replacement_rules],
                "filter_rules": [asdict(r) for r in self.filter_rules],
            }
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp, path)

    def load_rules(self, path: str) -> bool:
        """Load rule sets from `path`. Returns False (defaults kept) if missing or unreadable."""
        if not os.path.isfile(path):
            return False
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            replacements = [
                ReplacementRule(
                    pattern=r["pattern"],
                    replacement=r.get("replacement", ""),
                    enabled=r.get("enabled", True),
                    target_fields=list(r.get("target_fields", [])),
                    use_case=RuleUseCase(r.get("use_case", "both")),
                    id=r.get("id") or str(uuid.uuid4()),
                )
                for r in data.get("replacement_rules", [])
            ]
            filters = [
                FilterRule(
                    pattern=r["pattern"],
                    enabled=r.get("enabled", True),
                    match_type=MatchType(r.get("match_type", "regex")),
                    logic=FilterLogic(r.get("logic", "exclude")),
                    id=r.get("id") or str(uuid.uuid4()),
                )
                for r in data.get("filter_rules", [])
            ]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            log.warning("Could not load rules from %s, keeping defaults: %s", path, e)
            return False

        with self._lock:
            self.replacement_rules = replacements
            self.filter_rules = filters
        log.info("Loaded %s replacement and %s filter rules from %s",
                 len(replacements), len(filters), path)
        return True
