import json
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from adedanha import db, socketio
from adedanha.models import Game, Player, Submission, Vote
from .scoring import apply_round_scores, score_snapshot


def broadcast_state(game_code: str) -> None:
    socketio.emit('state_update', {'game_code': game_code}, to=f"game:{game_code}", namespace='/ws')


def all_online_answered(game: Game) -> bool:
    online = game.online_player_ids()
    if not online:
        return False
    submitted = {s.player_id for s in game.current_submissions()}
    return all(pid in submitted for pid in online)


def start_categories(game: Game) -> None:
    game.state = 'CATEGORIES'
    db.session.add(game)
    db.session.commit()
    current_app.logger.info(f"[start] game={game.game_code} players={len(game.players)}")
    broadcast_state(game.game_code)


def begin_round(game: Game, categories: List[str], letter: str) -> None:
    used = game.letters_used
    used.append(letter)
    game.state = 'GAME'
    game.categories = json.dumps(categories)
    game.current_letter = letter
    game.used_letters = json.dumps(used)
    game.round_number = int(game.round_number or 0) + 1
    game.round_winner_id = None
    db.session.add(game)
    db.session.commit()
    current_app.logger.info(
        f"[round-start] game={game.game_code} round={game.round_number} letter={letter} categories={categories}"
    )
    broadcast_state(game.game_code)


def enter_validation(game: Game) -> Optional[dict]:
    """GAME -> VALIDATION. With a single player online there is nobody to vote,
    so the round goes straight on to RESULTS and the scoring outcome is returned."""
    game.state = 'VALIDATION'
    db.session.add(game)
    db.session.commit()
    current_app.logger.info(f"[validation] game={game.game_code} round={game.round_number}")
    broadcast_state(game.game_code)
    if len(game.online_player_ids()) == 1:
        return enter_results(game)
    return None


def maybe_enter_validation(game: Game) -> bool:
    if game.state == 'GAME' and all_online_answered(game):
        enter_validation(game)
        return True
    return False


def maybe_enter_results(game: Game) -> bool:
    """A round left in validation with one player online has nobody to vote."""
    if game.state == 'VALIDATION' and len(game.online_player_ids()) == 1:
        enter_results(game)
        return True
    return False


def catch_up(game: Game) -> bool:
    """Move the round on once the players still online no longer hold it up."""
    return maybe_enter_validation(game) or maybe_enter_results(game)


def enter_results(game: Game) -> dict:
    """VALIDATION -> RESULTS: score the round and add it to the players' totals.

    Calling it again while already in RESULTS retries a failed write; a round
    that was already applied is not added twice.
    """
    if game.state != 'RESULTS':
        game.state = 'RESULTS'
        db.session.add(game)
        db.session.commit()
    round_scores = score_snapshot(game.snapshot())
    notice = apply_round_scores(game, round_scores)
    broadcast_state(game.game_code)
    return {'round_scores': round_scores, 'notice': notice}


def next_round(game: Game) -> None:
    game.state = 'CATEGORIES'
    game.round_winner_id = None
    db.session.add(game)
    db.session.commit()
    current_app.logger.info(f"[next_round] game={game.game_code} after round={game.round_number}")
    broadcast_state(game.game_code)


def end_session(game_code: str) -> None:
    """End the session: notify clients and cleanup DB rows for the game."""
    socketio.emit('session_ended', {'game_code': game_code}, to=f"game:{game_code}", namespace='/ws')
    try:
        game = Game.query.filter_by(game_code=game_code).first()
        if game:
            Vote.query.filter_by(game_id=game.id).delete()
            Submission.query.filter_by(game_id=game.id).delete()
            db.session.delete(game)
            db.session.commit()
            current_app.logger.info(f"[end] game={game_code} removed")
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[end-failed] game={game_code}: {exc}")


def remove_player(game: Game, player: Player) -> bool:
    """Drop a player from the session. Returns True when the session ended with them."""
    game_code = game.game_code
    leaving_id = player.id
    db.session.delete(player)
    db.session.commit()
    remaining = Player.query.filter_by(game_id=game.id).order_by(Player.joined_at).all()
    if not remaining:
        end_session(game_code)
        return True
    if game.host_id == leaving_id:
        game.host_id = remaining[0].id
        db.session.add(game)
        db.session.commit()
        current_app.logger.info(f"[host-handover] game={game_code} from={leaving_id} to={game.host_id}")
    current_app.logger.info(f"[leave] game={game_code} player={leaving_id}")
    # The leaver may have been the last one the round was waiting for
    if not catch_up(game):
        broadcast_state(game_code)
    return False
