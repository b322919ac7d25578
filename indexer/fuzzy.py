"""Approximate string matching for the search index.

A Bitap matcher scores one pattern against one field value, and
``FuzzyIndex`` combines weighted per-field scores into a single document
score. Scores are distances: 0 is a perfect match, 1 is no match at all.
"""

import re
import sys
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

MAX_BITS = 32
WORD_MASK = (1 << MAX_BITS) - 1
EPSILON = sys.float_info.epsilon

TOKEN_RE = re.compile(r"[^ ]+")

Span = Tuple[int, int]


@dataclass
class MatchResult:
    is_match: bool
    score: float
    indices: List[Span] = field(default_factory=list)


def create_pattern_alphabet(pattern: str) -> Dict[str, int]:
    """Bit mask per character; the first pattern character is the high bit."""
    mask: Dict[str, int] = {}
    length = len(pattern)
    for i, char in enumerate(pattern):
        mask[char] = mask.get(char, 0) | (1 << (length - i - 1))
    return mask


def compute_score(pattern_length: int, errors: int = 0, current_location: int = 0,
                  expected_location: int = 0, distance: int = 100,
                  ignore_location: bool = False) -> float:
    accuracy = errors / pattern_length
    if ignore_location:
        return accuracy

    proximity = abs(expected_location - current_location)
    if not distance:
        return 1.0 if proximity else accuracy
    return accuracy + proximity / distance


def mask_to_indices(match_mask: Sequence[int], min_length: int = 1) -> List[Span]:
    """Collapse a per-character match mask into inclusive spans of ``min_length`` or more."""
    indices: List[Span] = []
    start = -1
    for i, matched in enumerate(match_mask):
        if matched and start == -1:
            start = i
        elif not matched and start != -1:
            if i - start >= min_length:
                indices.append((start, i - 1))
            start = -1

    end = len(match_mask)
    if end and match_mask[end - 1] and end - start >= min_length:
        indices.append((start, end - 1))
    return indices


def _bit(values: List[int], index: int) -> int:
    return values[index] if 0 <= index < len(values) else 0


def bitap_search(text: str, pattern: str, alphabet: Dict[str, int],
                 location: int = 0, distance: int = 100, threshold: float = 0.6,
                 find_all_matches: bool = False, min_match_char_length: int = 1,
                 include_matches: bool = False, ignore_location: bool = False) -> MatchResult:
    """Search ``text`` for ``pattern`` allowing errors, up to ``MAX_BITS`` characters."""
    if len(pattern) > MAX_BITS:
        raise ValueError(f"Pattern length exceeds max of {MAX_BITS}")

    pattern_len = len(pattern)
    text_len = len(text)
    expected_location = max(0, min(location, text_len))
    current_threshold = threshold
    best_location = expected_location

    def score_at(errors: int, current_location: int) -> float:
        return compute_score(
            pattern_len,
            errors=errors,
            current_location=current_location,
            expected_location=expected_location,
            distance=distance,
            ignore_location=ignore_location,
        )

    compute_matches = min_match_char_length > 1 or include_matches
    match_mask = [0] * text_len if compute_matches else []

    # Exact occurrences tighten the threshold before the approximate scan
    index = text.find(pattern, best_location)
    while index > -1:
        current_threshold = min(score_at(0, index), current_threshold)
        best_location = index + pattern_len
        if compute_matches:
            for k in range(pattern_len):
                match_mask[index + k] = 1
        index = text.find(pattern, best_location)

    best_location = -1
    last_bit_arr: List[int] = []
    final_score = 1.0
    bin_max = pattern_len + text_len
    mask = 1 << (pattern_len - 1)

    for i in range(pattern_len):
        # Binary search for how far from the expected location i errors can reach
        bin_min = 0
        bin_mid = bin_max
        while bin_min < bin_mid:
            if score_at(i, expected_location + bin_mid) <= current_threshold:
                bin_min = bin_mid
            else:
                bin_max = bin_mid
            bin_mid = (bin_max - bin_min) // 2 + bin_min

        bin_max = bin_mid

        start = max(1, expected_location - bin_mid + 1)
        if find_all_matches:
            finish = text_len
        else:
            finish = min(expected_location + bin_mid, text_len) + pattern_len

        bit_arr = [0] * (finish + 2)
        bit_arr[finish + 1] = (1 << i) - 1

        j = finish
        while j >= start:
            current_location = j - 1
            char_match = alphabet.get(text[current_location], 0) if current_location < text_len else 0

            if compute_matches and current_location < text_len:
                match_mask[current_location] = 1 if char_match else 0

            bit_arr[j] = ((bit_arr[j + 1] << 1) | 1) & char_match

            if i:
                bit_arr[j] |= (
                    ((_bit(last_bit_arr, j + 1) | _bit(last_bit_arr, j)) << 1)
                    | 1
                    | _bit(last_bit_arr, j + 1)
                )
            bit_arr[j] &= WORD_MASK

            if bit_arr[j] & mask:
                final_score = score_at(i, current_location)
                if final_score <= current_threshold:
                    current_threshold = final_score
                    best_location = current_location
                    if best_location <= expected_location:
                        break
                    start = max(1, 2 * expected_location - best_location)
            j -= 1

        # No hope for a better match with one more error
        if score_at(i + 1, expected_location) > current_threshold:
            break

        last_bit_arr = bit_arr

    result = MatchResult(is_match=best_location >= 0, score=max(0.001, final_score))

    if compute_matches:
        indices = mask_to_indices(match_mask, min_match_char_length)
        if not indices:
            result.is_match = False
        elif include_matches:
            result.indices = indices

    return result


@dataclass
class _Chunk:
    pattern: str
    alphabet: Dict[str, int]
    start_index: int


class BitapSearcher:
    """Matches one (lowercased) pattern against arbitrary field values.

    Patterns longer than ``MAX_BITS`` are split into chunks; the last chunk
    is anchored to the pattern end so every chunk is full width.
    """

    def __init__(self, pattern: str, threshold: float = 0.6, location: int = 0,
                 distance: int = 100, min_match_char_length: int = 1,
                 include_matches: bool = True, find_all_matches: bool = False,
                 ignore_location: bool = False, case_sensitive: bool = False):
        self.threshold = threshold
        self.location = location
        self.distance = distance
        self.min_match_char_length = min_match_char_length
        self.include_matches = include_matches
        self.find_all_matches = find_all_matches
        self.ignore_location = ignore_location
        self.case_sensitive = case_sensitive

        self.pattern = pattern if case_sensitive else pattern.lower()
        self.chunks: List[_Chunk] = []
        if not self.pattern:
            return

        length = len(self.pattern)
        if length > MAX_BITS:
            remainder = length % MAX_BITS
            end = length - remainder
            for i in range(0, end, MAX_BITS):
                self._add_chunk(self.pattern[i:i + MAX_BITS], i)
            if remainder:
                start_index = length - MAX_BITS
                self._add_chunk(self.pattern[start_index:], start_index)
        else:
            self._add_chunk(self.pattern, 0)

    def _add_chunk(self, pattern: str, start_index: int) -> None:
        self.chunks.append(_Chunk(pattern, create_pattern_alphabet(pattern), start_index))

    def search_in(self, text: str) -> MatchResult:
        if not self.case_sensitive:
            text = text.lower()

        if self.pattern == text:
            return MatchResult(is_match=True, score=0.0, indices=[(0, len(text) - 1)])

        if not self.chunks:
            return MatchResult(is_match=False, score=1.0)

        all_indices: List[Span] = []
        total_score = 0.0
        has_matches = False

        for chunk in self.chunks:
            result = bitap_search(
                text,
                chunk.pattern,
                chunk.alphabet,
                location=self.location + chunk.start_index,
                distance=self.distance,
                threshold=self.threshold,
                find_all_matches=self.find_all_matches,
                min_match_char_length=self.min_match_char_length,
                include_matches=self.include_matches,
                ignore_location=self.ignore_location,
            )
            if result.is_match:
                has_matches = True
                all_indices.extend(result.indices)
            total_score += result.score

        if not has_matches:
            return MatchResult(is_match=False, score=1.0)

        return MatchResult(
            is_match=True,
            score=total_score / len(self.chunks),
            indices=all_indices if self.include_matches else [],
        )


@dataclass
class FuzzyKey:
    name: str
    weight: float

    @property
    def path(self) -> List[str]:
        return self.name.split('.')


@dataclass
class FuzzyMatch:
    """One matched field value within a hit."""
    key: str
    value: str
    score: float
    norm: float
    indices: List[Span] = field(default_factory=list)
    ref_index: Optional[int] = None  # position within a list-valued field


@dataclass
class FuzzyHit:
    ref_index: int
    item: Any
    score: float
    matches: List[FuzzyMatch] = field(default_factory=list)


@dataclass
class _FieldValue:
    text: str
    norm: float
    ref_index: Optional[int] = None


def resolve_path(obj: Any, path: Sequence[str]) -> Any:
    """Follow a dotted key through attributes and mapping keys."""
    value = obj
    for part in path:
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


class FieldNorm:
    """Length normalization: shorter fields weigh more, ``1/sqrt(tokens)``."""

    def __init__(self, weight: float = 1.0, mantissa: int = 3):
        self.weight = weight
        self.factor = 10 ** mantissa
        self.cache: Dict[int, float] = {}

    def get(self, value: str) -> float:
        num_tokens = max(1, len(TOKEN_RE.findall(value)))
        if num_tokens not in self.cache:
            norm = 1 / math.pow(num_tokens, 0.5 * self.weight)
            self.cache[num_tokens] = math.floor(norm * self.factor + 0.5) / self.factor
        return self.cache[num_tokens]


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value
    return None


class FuzzyIndex:
    """Weighted multi-field fuzzy search over a fixed list of items.

    Weights are normalized to sum to 1. A hit's score is the product of
    ``score ** (weight * norm)`` over every matched field value, so matches
    in more fields and in shorter fields rank higher. Results are sorted by
    ascending score, ties broken by position in the item list.

    With ``max_field_length`` set, each field value is cut to that many
    leading characters when the index is built; text past the cut is never
    matched.
    """

    def __init__(self, items: Sequence[Any], keys: Sequence[Tuple[str, float]],
                 threshold: float = 0.6, min_match_char_length: int = 1,
                 ignore_location: bool = False, ignore_field_norm: bool = False,
                 max_field_length: Optional[int] = None):
        total_weight = sum(weight for _, weight in keys)
        if total_weight <= 0:
            raise ValueError("Key weights must sum to a positive number")

        self.keys = [FuzzyKey(name, weight / total_weight) for name, weight in keys]
        self.threshold = threshold
        self.min_match_char_length = min_match_char_length
        self.ignore_location = ignore_location
        self.ignore_field_norm = ignore_field_norm
        self.max_field_length = max_field_length

        self.items = list(items)
        self._norm = FieldNorm()
        self._records = [self._create_record(item) for item in self.items]

    def __len__(self) -> int:
        return len(self.items)

    def _field_text(self, value: Any) -> Optional[str]:
        text = _as_text(value)
        if text is not None and self.max_field_length:
            text = text[:self.max_field_length]
        return text

    def _create_record(self, item: Any) -> List[Any]:
        record: List[Any] = []
        for key in self.keys:
            value = resolve_path(item, key.path)
            if isinstance(value, (list, tuple)):
                entries = []
                for idx, element in enumerate(value):
                    text = self._field_text(element)
                    if text is not None:
                        entries.append(_FieldValue(text, self._norm.get(text), idx))
                record.append(entries)
            else:
                text = self._field_text(value)
                record.append(_FieldValue(text, self._norm.get(text)) if text is not None else None)
        return record

    def search(self, query: str, limit: Optional[int] = None) -> List[FuzzyHit]:
        if not query.strip():
            return []

        searcher = BitapSearcher(
            query,
            threshold=self.threshold,
            min_match_char_length=self.min_match_char_length,
            include_matches=True,
            ignore_location=self.ignore_location,
        )

        hits: List[FuzzyHit] = []
        for ref_index, (item, record) in enumerate(zip(self.items, self._records)):
            matches: List[FuzzyMatch] = []
            for key, value in zip(self.keys, record):
                matches.extend(self._find_matches(key, value, searcher))
            if matches:
                hits.append(FuzzyHit(
                    ref_index=ref_index,
                    item=item,
                    score=self._score(matches),
                    matches=matches,
                ))

        hits.sort(key=lambda hit: (hit.score, hit.ref_index))
        if limit is not None and limit > 0:
            hits = hits[:limit]
        return hits

    def _find_matches(self, key: FuzzyKey, value: Any, searcher: BitapSearcher) -> List[FuzzyMatch]:
        if value is None:
            return []

        values = value if isinstance(value, list) else [value]
        matches = []
        for entry in values:
            result = searcher.search_in(entry.text)
            if result.is_match:
                matches.append(FuzzyMatch(
                    key=key.name,
                    value=entry.text,
                    score=result.score,
                    norm=entry.norm,
                    indices=result.indices,
                    ref_index=entry.ref_index,
                ))
        return matches

    def _score(self, matches: List[FuzzyMatch]) -> float:
        weights = {key.name: key.weight for key in self.keys}
        total = 1.0
        for match in matches:
            weight = weights.get(match.key)
            base = EPSILON if match.score == 0 and weight else match.score
            exponent = (weight or 1) * (1 if self.ignore_field_norm else match.norm)
            total *= math.pow(base, exponent)
        return total
