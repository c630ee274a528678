import random
from typing import Iterable, List, Optional

DEFAULT_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVXZ'


def available_letters(used: Iterable[str], alphabet: str = DEFAULT_ALPHABET) -> List[str]:
    used_set = {u.upper() for u in used or []}
    return [letter for letter in alphabet.upper() if letter not in used_set]


def draw_letter(used: Iterable[str], alphabet: str = DEFAULT_ALPHABET, rng=random) -> Optional[str]:
    """Pick a letter not used yet this session, or None once the alphabet is spent."""
    letters = available_letters(used, alphabet)
    if not letters:
        return None
    return rng.choice(letters)
