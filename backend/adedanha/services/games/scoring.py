import json
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from adedanha import db

# player id -> category id -> free text
AnswerSet = Dict[str, Dict[str, str]]
# (player id, category id) -> ids of the players who voted to nullify that answer
VoteSet = Dict[Tuple[str, str], Set[str]]
# player id -> {'total': int, 'categories': {category id: 0 | 5 | 10}}
RoundScores = Dict[str, dict]

UNIQUE_POINTS = 10
SHARED_POINTS = 5
NULLIFY_RATIO = 0.5


@dataclass(frozen=True)
class RoundSnapshot:
    """Everything the scorer reads for one round, detached from the database."""
    registry: Dict[str, int]
    online: FrozenSet[str]
    categories: Tuple[str, ...]
    letter: str
    answers: AnswerSet = field(default_factory=dict)
    votes: VoteSet = field(default_factory=dict)
    round_number: int = 0


def normalize_answer(value) -> str:
    if not isinstance(value, str):
        return ''
    return value.strip().lower()


def eligible_players(online_ids: Iterable[str], answers: Mapping[str, dict]) -> List[str]:
    """Online players plus anyone who submitted, in first-seen order."""
    seen: Dict[str, None] = {}
    for pid in online_ids:
        seen.setdefault(pid, None)
    for pid in (answers or {}):
        seen.setdefault(pid, None)
    return list(seen)


def is_nullified(player_id: str, category_id: str, votes: Mapping[Tuple[str, str], Set[str]],
                 online_ids: Iterable[str]) -> bool:
    """Strict majority of the other online players voted the answer down.

    Nobody else online means nobody could vote, so the answer stands.
    """
    voters = len({pid for pid in online_ids if pid != player_id})
    if voters == 0:
        return False
    against = len((votes or {}).get((player_id, category_id)) or ())
    return against / voters > NULLIFY_RATIO


def score_round(players: Iterable[str], categories: Iterable[str], letter: str,
                answers: Optional[AnswerSet], votes: Optional[VoteSet],
                online_players: Iterable[str]) -> RoundScores:
    """Score one round.

    Each category is scored independently: nullified, blank and wrong-letter
    answers get 0, answers shared by two or more players get 5 and unique
    answers get 10. Every player gets an entry for every category. An empty
    answer set or category list scores nothing.
    """
    categories = list(categories or [])
    if not answers or not categories:
        return {}
    players = list(players)
    online = set(online_players)
    votes = votes or {}
    prefix = (letter or '').strip().lower()

    scores: RoundScores = {pid: {'total': 0, 'categories': {}} for pid in players}
    for category_id in categories:
        valid: Dict[str, str] = {}
        for pid in players:
            scores[pid]['categories'][category_id] = 0
            if is_nullified(pid, category_id, votes, online):
                continue
            answer = normalize_answer((answers.get(pid) or {}).get(category_id))
            if answer and answer.startswith(prefix):
                valid[pid] = answer
        counts = Counter(valid.values())
        for pid, answer in valid.items():
            scores[pid]['categories'][category_id] = SHARED_POINTS if counts[answer] > 1 else UNIQUE_POINTS

    for entry in scores.values():
        entry['total'] = sum(entry['categories'].values())
    return scores


def score_snapshot(snapshot: RoundSnapshot) -> RoundScores:
    players = eligible_players(sorted(snapshot.online), snapshot.answers)
    return score_round(players, snapshot.categories, snapshot.letter,
                       snapshot.answers, snapshot.votes, snapshot.online)


def cumulative_totals(registry_totals: Mapping[str, int], round_scores: RoundScores) -> Dict[str, int]:
    """New cumulative total per scored player that is still registered."""
    return {
        pid: int(registry_totals[pid] or 0) + entry['total']
        for pid, entry in round_scores.items()
        if pid in registry_totals
    }


def apply_round_scores(game, round_scores: RoundScores) -> Optional[str]:
    """Persist cumulative totals and the round summary for the game's current round.

    A round is applied at most once: ``game.last_scored_round`` records the
    last round whose totals were added. Returns a user-facing notice when the
    write failed, None otherwise.
    """
    code = game.game_code
    round_idx = int(game.round_number or 0)
    if int(game.last_scored_round or 0) >= round_idx:
        current_app.logger.warning(
            f"[score-skip] game={code} round={round_idx} already applied"
        )
        return None

    registry = {p.id: p for p in game.players}
    updates = cumulative_totals({pid: p.total_score for pid, p in registry.items()}, round_scores)
    for pid, new_total in updates.items():
        registry[pid].total_score = new_total
        db.session.add(registry[pid])

    history = game.history
    history.append({
        'round': round_idx,
        'letter': game.current_letter,
        'round_winner': game.round_winner_id,
        'scores': round_scores,
    })
    game.round_history = json.dumps(history)
    game.last_scored_round = round_idx
    db.session.add(game)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[score-persist-failed] game={code} round={round_idx}: {exc}")
        return 'Scores could not be saved; totals may be out of date until the next attempt.'
    current_app.logger.info(f"[score] game={code} round={round_idx} totals={updates}")
    return None
