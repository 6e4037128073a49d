"""
String similarity scoring for company-name matching.

Two independent measures, each in [0, 1], blended by score_similarity:

- containment: one name contains the other -> CONTAINMENT_SCORE
- jaccard over whitespace word sets
- when jaccard exceeds JACCARD_BLEND_FLOOR, the final score is
  JACCARD_WEIGHT * jaccard + LEVENSHTEIN_WEIGHT * levenshtein_similarity
"""

CONTAINMENT_SCORE = 0.9
JACCARD_BLEND_FLOOR = 0.5
JACCARD_WEIGHT = 0.5
LEVENSHTEIN_WEIGHT = 0.5


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit insert, delete and substitute costs."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + cost,
                )
            )
        previous = current
    return previous[-1]


def levenshtein_similarity(a: str, b: str) -> float:
    """1 - distance / max length; two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def jaccard(a: str, b: str) -> float:
    """Jaccard index of the whitespace-separated word sets."""
    words_a = set(a.split())
    words_b = set(b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def score_similarity(a: str, b: str) -> float:
    """Blend containment, jaccard and edit distance into one score."""
    s1 = a.lower().strip()
    s2 = b.lower().strip()

    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return CONTAINMENT_SCORE

    word_overlap = jaccard(s1, s2)
    if word_overlap > JACCARD_BLEND_FLOOR:
        return JACCARD_WEIGHT * word_overlap + LEVENSHTEIN_WEIGHT * levenshtein_similarity(s1, s2)
    return word_overlap
