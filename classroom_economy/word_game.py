"""
Word Game

Five-letter word guessing with six attempts. The server picks the target
word, validates every guess against its dictionary and computes per-letter
feedback: 2 = right letter in the right place, 1 = letter elsewhere in the
word, 0 = not in the word. Repeated letters are only marked as often as
they occur in the target.
"""

import random
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from .errors import EconomyValidationError

WORD_LENGTH = 5
MAX_GUESSES = 6

# Units earned on a win, by number of guesses used
UNITS_BY_GUESSES = {1: 10, 2: 9, 3: 8, 4: 7, 5: 6, 6: 5}

_BUILTIN_WORDS = """
about above actor adult after again agent agree ahead alarm album alert alike
alive allow alone along alter among angel anger angle angry apart apple apply
arena argue arise array asset audio audit avoid award aware basic beach begin
being below bench birth black blade blame blank blind block blood board boost
bound brain brand brave bread break brick brief bring broad brown brush build
buyer cabin cable candy carry catch cause chain chair chalk charm chart chase
cheap check chess chest chief child chose civil claim class clean clear climb
clock close cloud coach coast color could count court cover craft crane crash
cream crime cross crowd crown curve cycle daily dance death delay depth dirty
doubt draft drama dream dress drink drive eager early earth eight elbow empty
enemy enjoy enter entry equal error event every exact exist extra faith false
fancy fault favor feast fence fever field fifth fight final first flame flash
fleet floor fluid focus force forty found frame fresh front frost fruit funny
giant given glass globe glove grace grade grain grand grant grape grass great
green greet group guard guess guest guide habit happy heart heavy hello hobby
horse hotel house human humor ideal image index inner input issue jelly jewel
joint judge juice knife knock known label large laser later laugh layer learn
least leave legal lemon level light limit local logic loose lucky lunch magic
major maker march match maybe mayor meant medal metal meter might minor model
money month moral motor mount mouse mouth movie music nerve never night noise
north novel nurse ocean offer often olive onion orbit order other outer owner
paint panel paper party pasta patch peace pearl phase phone photo piano piece
pilot pitch pizza place plain plane plant plate point pound power press price
pride prime print prize proof proud pupil queen quick quiet quote radio raise
range rapid ratio reach react ready relax reply rider ridge right river robot
rough round route royal rural salad sauce scale scene score sense serve seven
shade shape share sharp sheep sheet shelf shell shift shine shirt shock shoot
short shout sight silly since skill skirt sleep slice slide small smart smile
smoke snack snake solar solid solve sound south space spare speak speed spend
spice spine spoon sport staff stage stair stamp stand start state steam steel
stick still stock stone store storm story stove study style sugar sunny super
sweet swing table taken taste teach teeth thank theme there these thick thing
think third those three throw thumb tiger times tired title toast today token
tooth topic total touch tough towel tower track trade trail train treat trend
trial tribe trick truck truly trust truth twice uncle under union unity until
upper upset urban usual valid value video visit vital voice waste watch water
whale wheat wheel where which while white whole woman world worry would write
wrong yield young youth zebra
"""

BUILTIN_WORDS = tuple(_BUILTIN_WORDS.split())


def normalize_word(word: str) -> str:
    return word.strip().lower()


def compute_feedback(guess: str, target: str) -> List[int]:
    """
    Per-letter feedback for a guess against the target.

    Exact matches are marked first so a repeated guess letter never claims a
    target letter already matched in place.
    """
    guess = normalize_word(guess)
    target = normalize_word(target)
    if len(guess) != WORD_LENGTH or len(target) != WORD_LENGTH:
        raise EconomyValidationError(f"Words must be exactly {WORD_LENGTH} letters")

    feedback = [0] * WORD_LENGTH
    remaining = {}
    for i, (g, t) in enumerate(zip(guess, target)):
        if g == t:
            feedback[i] = 2
        else:
            remaining[t] = remaining.get(t, 0) + 1

    for i, g in enumerate(guess):
        if feedback[i] == 2:
            continue
        if remaining.get(g, 0) > 0:
            feedback[i] = 1
            remaining[g] -= 1

    return feedback


def is_win(feedback: Sequence[int]) -> bool:
    return all(mark == 2 for mark in feedback)


class WordList:
    """Dictionary of allowed guesses; every entry is also a possible target"""

    def __init__(self, words: Optional[Iterable[str]] = None):
        source = BUILTIN_WORDS if words is None else words
        cleaned = sorted({normalize_word(w) for w in source if len(normalize_word(w)) == WORD_LENGTH})
        if not cleaned:
            raise ValueError("Word list contains no five-letter words")
        self._words = cleaned
        self._lookup = frozenset(cleaned)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'WordList':
        """One word per line; lines that are not five letters are ignored"""
        text = Path(path).read_text(encoding="utf-8")
        return cls(text.splitlines())

    def __len__(self) -> int:
        return len(self._words)

    def __contains__(self, word: str) -> bool:
        return self.is_valid(word)

    def is_valid(self, word: str) -> bool:
        normalized = normalize_word(word)
        return len(normalized) == WORD_LENGTH and normalized in self._lookup

    def random_word(self, rng: Optional[random.Random] = None) -> str:
        rng = rng or random.SystemRandom()
        return rng.choice(self._words)

    def validate_guess(self, guess) -> str:
        """
        Normalised guess.

        Raises:
            EconomyValidationError: Wrong length, non-letters or not in the dictionary
        """
        if not isinstance(guess, str):
            raise EconomyValidationError("Guess must be a string")
        normalized = normalize_word(guess)
        if len(normalized) != WORD_LENGTH or not normalized.isalpha():
            raise EconomyValidationError(f"Guess must be exactly {WORD_LENGTH} letters")
        if normalized not in self._lookup:
            raise EconomyValidationError(f"Not a valid word: {normalized}")
        return normalized
