"""Short Authentication String (SAS) derivation.

Both peers compute the SAS locally from the two transport fingerprints
and compare it out-of-band. It is never sent over the channel.

Derivation (SHA-256 over "<lower fingerprint>:<higher fingerprint>"):
- digits: bytes 0-2 as a big-endian integer, mod 1,000,000, 6 digits
- words: six big-endian 16-bit values from bytes 3-14, mod dictionary size
"""

import hashlib
from dataclasses import dataclass

from peerpair.dicewords import Dictionary, load_dictionary

__all__ = ["SASResult", "compute_sas", "sas_digest"]

SAS_SEPARATOR = ":"
SAS_DIGIT_COUNT = 6
SAS_WORD_COUNT = 6


@dataclass(frozen=True)
class SASResult:
    """Verification code shown to both operators.

    Attributes:
        digits: 6-character zero-padded decimal string.
        words: Exactly 6 dictionary words.
    """

    digits: str
    words: tuple[str, ...]

    def display(self) -> str:
        """Single-line form, e.g. '042917 - apple river stone ...'."""
        return f"{self.digits} - {' '.join(self.words)}"

    def matches(self, other: "SASResult") -> bool:
        return self.digits == other.digits and self.words == other.words


def sas_digest(fingerprint_a: str, fingerprint_b: str) -> bytes:
    """SHA-256 over the order-independent fingerprint pair."""
    first, second = sorted([fingerprint_a, fingerprint_b])
    canonical = f"{first}{SAS_SEPARATOR}{second}"
    return hashlib.sha256(canonical.encode("utf-8")).digest()


async def compute_sas(
    fingerprint_a: str,
    fingerprint_b: str,
    dictionary: Dictionary | None = None,
) -> SASResult:
    """Compute the SAS for a pair of fingerprints.

    The result is the same whichever order the fingerprints are given in.

    Args:
        fingerprint_a: One party's fingerprint.
        fingerprint_b: The other party's fingerprint.
        dictionary: Dictionary to use. None uses the shared dictionary.

    Raises:
        DictionaryUnavailable: If the shared dictionary cannot be loaded.
    """
    digest = sas_digest(fingerprint_a, fingerprint_b)

    value = int.from_bytes(digest[0:3], "big")
    digits = str(value % 10**SAS_DIGIT_COUNT).zfill(SAS_DIGIT_COUNT)

    if dictionary is None:
        dictionary = await load_dictionary()
    words = tuple(dictionary.words_from_bytes(digest[3:15], SAS_WORD_COUNT))

    return SASResult(digits=digits, words=words)
