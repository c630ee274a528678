from flask import Blueprint, jsonify, request, current_app
from flask_login import login_user, logout_user, login_required, current_user
from sqlalchemy.exc import IntegrityError
from adedanha import db
from adedanha.models import Game, Player, Submission, Vote
from adedanha.services.games import flow
from adedanha.services.games.authority import is_authorized
from adedanha.services.games.catalog import CATEGORIES, DEFAULT_SELECTION, normalize_selection
from adedanha.services.games.letters import draw_letter
from adedanha.services.games.scoring import normalize_answer, score_snapshot
import json


games = Blueprint('games', __name__)


def _get_game(game_code: str) -> Game:
    return Game.query.filter_by(game_code=game_code.upper()).first_or_404()


def _denied(message: str):
    return jsonify({'error': message, 'code': 'permission-denied'}), 403


def _wrong_state(game: Game, expected: str):
    return jsonify({'error': f'Game is in {game.state}, expected {expected}'}), 409


def _seated_player(game: Game):
    """The logged in player, if their seat belongs to this game."""
    if current_user.is_authenticated and current_user.game_id == game.id:
        return current_user._get_current_object()
    return None


@games.route('/categories', methods=['GET'])
def list_categories():
    return jsonify({'categories': CATEGORIES, 'default_selection': DEFAULT_SELECTION})


@games.route('/create', methods=['POST'])
def create_game():
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    if not isinstance(name, str) or not name.strip():
        return jsonify({'error': 'Player name is required'}), 400
    name = name.strip()
    mode = data.get('mode') or 'multi'
    if mode not in ('single', 'multi'):
        return jsonify({'error': 'Mode must be single or multi'}), 400

    # Single player skips the lobby
    new_game = Game(state='CATEGORIES' if mode == 'single' else 'LOBBY')
    host = Player(name=name)
    new_game.host_id = host.id
    new_game.players.append(host)
    db.session.add(new_game)
    db.session.commit()
    login_user(host, remember=True)
    current_app.logger.info(f"[create] game={new_game.game_code} mode={mode} host={host.id}")

    return jsonify({
        'message': 'New game created!',
        'game_code': new_game.game_code,
        'player': host.to_dict(),
    }), 201


@games.route('/join', methods=['POST'])
def join_game():
    data = request.get_json(silent=True) or {}
    game_code = data.get('game_code')
    name = data.get('name')
    if not isinstance(game_code, str) or not isinstance(name, str) or not game_code or not name.strip():
        return jsonify({'error': 'Game code and player name are required'}), 400
    name = name.strip()

    game = Game.query.filter_by(game_code=game_code.upper()).first()
    if not game:
        return jsonify({'error': 'Game not found'}), 404

    if game.state != 'LOBBY':
        return jsonify({'error': 'This game is not in the lobby'}), 403

    max_players = int(current_app.config.get('MAX_PLAYERS', 20))
    if len(game.players) >= max_players:
        return jsonify({'error': f'This game is full ({max_players} players)'}), 403

    new_player = Player(name=name, game_id=game.id)
    db.session.add(new_player)
    db.session.commit()
    login_user(new_player, remember=True)
    flow.broadcast_state(game.game_code)

    return jsonify(new_player.to_dict()), 201


@games.route('/<string:game_code>/state', methods=['GET'])
def get_game_state(game_code):
    game = _get_game(game_code)
    return jsonify(game.to_dict())


@games.route('/<string:game_code>/start', methods=['POST'])
@login_required
def start_game(game_code):
    game = _get_game(game_code)
    if not is_authorized(current_user.id, game):
        return _denied('Only the host may start the game')
    if game.state != 'LOBBY':
        return _wrong_state(game, 'LOBBY')
    flow.start_categories(game)
    return jsonify(game.to_dict())


@games.route('/<string:game_code>/round', methods=['POST'])
@login_required
def begin_round(game_code):
    data = request.get_json(silent=True) or {}
    game = _get_game(game_code)
    if not is_authorized(current_user.id, game):
        return _denied('Only the host may choose the categories')
    if game.state != 'CATEGORIES':
        return _wrong_state(game, 'CATEGORIES')

    selection = normalize_selection(data.get('categories'))
    min_categories = int(current_app.config.get('MIN_CATEGORIES', 2))
    if len(selection) < min_categories:
        return jsonify({'error': f'Pick at least {min_categories} categories'}), 400

    alphabet = current_app.config.get('LETTER_ALPHABET') or 'ABCDEFGHIJKLMNOPQRSTUVXZ'
    letter = draw_letter(game.letters_used, alphabet)
    if letter is None:
        return jsonify({'error': 'Every letter has already been played'}), 409

    flow.begin_round(game, selection, letter)
    return jsonify(game.to_dict())


@games.route('/<string:game_code>/answers', methods=['POST'])
@login_required
def submit_answers(game_code):
    data = request.get_json(silent=True) or {}
    game = _get_game(game_code)
    player = _seated_player(game)
    if player is None:
        return _denied('You are not a player in this game')
    if game.state != 'GAME':
        return _wrong_state(game, 'GAME')

    raw = data.get('answers') or {}
    if not isinstance(raw, dict):
        return jsonify({'error': 'Answers must be an object of category id to text'}), 400
    categories = set(game.category_ids)
    answers = {cid: text for cid, text in raw.items() if cid in categories and isinstance(text, str)}

    submission = Submission(
        game_id=game.id,
        round_number=game.round_number,
        player_id=player.id,
        player_name=player.name,
        answers=json.dumps(answers),
    )
    db.session.add(submission)
    # First one in pressed STOP
    if not game.round_winner_id:
        game.round_winner_id = player.id
        db.session.add(game)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Already answered this round'}), 400
    current_app.logger.info(f"[answers] game={game.game_code} round={game.round_number} player={player.id}")

    if not flow.maybe_enter_validation(game):
        flow.broadcast_state(game.game_code)
    return jsonify({'message': 'Answers submitted', 'round_winner': game.round_winner_id, 'state': game.state})


@games.route('/<string:game_code>/close', methods=['POST'])
@login_required
def close_answers(game_code):
    """Force the round into validation without waiting for everyone."""
    game = _get_game(game_code)
    if game.state != 'GAME':
        return _wrong_state(game, 'GAME')
    if current_user.id != game.round_winner_id and not is_authorized(current_user.id, game):
        return _denied('Only the player who stopped the round or the host may close it')
    outcome = flow.enter_validation(game)
    payload = game.to_dict()
    if outcome:
        payload.update(outcome)
    return jsonify(payload)


@games.route('/<string:game_code>/votes', methods=['POST'])
@login_required
def toggle_vote(game_code):
    data = request.get_json(silent=True) or {}
    target_id = data.get('player_id')
    category_id = data.get('category_id')
    game = _get_game(game_code)
    voter = _seated_player(game)
    if voter is None:
        return _denied('You are not a player in this game')
    if game.state != 'VALIDATION':
        return _wrong_state(game, 'VALIDATION')
    if not isinstance(target_id, str) or not isinstance(category_id, str) or not all([target_id, category_id]):
        return jsonify({'error': 'Player id and category id are required'}), 400
    if target_id == voter.id:
        return jsonify({'error': 'You cannot vote on your own answer'}), 400
    if category_id not in game.category_ids:
        return jsonify({'error': 'Unknown category'}), 400
    answers = game.answer_set()
    if not normalize_answer(answers.get(target_id, {}).get(category_id)):
        return jsonify({'error': 'There is no answer to vote on'}), 400

    existing = Vote.query.filter_by(
        game_id=game.id, round_number=game.round_number,
        target_player_id=target_id, category_id=category_id, voter_id=voter.id,
    ).first()
    if existing:
        db.session.delete(existing)
        voted = False
    else:
        db.session.add(Vote(
            game_id=game.id, round_number=game.round_number,
            target_player_id=target_id, category_id=category_id, voter_id=voter.id,
        ))
        voted = True
    db.session.commit()
    flow.broadcast_state(game.game_code)

    count = len(game.vote_set().get((target_id, category_id), set()))
    return jsonify({'voted': voted, 'votes': count})


@games.route('/<string:game_code>/finish', methods=['POST'])
@login_required
def finish_validation(game_code):
    game = _get_game(game_code)
    if not is_authorized(current_user.id, game):
        return _denied('Only the host may finish validation')
    if game.state not in ('VALIDATION', 'RESULTS'):
        return _wrong_state(game, 'VALIDATION')
    outcome = flow.enter_results(game)
    payload = game.to_dict()
    payload.update(outcome)
    return jsonify(payload)


@games.route('/<string:game_code>/results', methods=['GET'])
def get_results(game_code):
    game = _get_game(game_code)
    if game.state != 'RESULTS':
        return _wrong_state(game, 'RESULTS')
    # Prefer what was actually applied to the totals for this round
    applied = [h for h in game.history if h.get('round') == game.round_number]
    round_scores = applied[-1]['scores'] if applied else score_snapshot(game.snapshot())
    standings = sorted(game.players, key=lambda p: p.total_score or 0, reverse=True)
    return jsonify({
        'game_code': game.game_code,
        'round_number': game.round_number,
        'letter': game.current_letter,
        'round_winner': game.round_winner_id,
        'round_scores': round_scores,
        'saved': int(game.last_scored_round or 0) >= int(game.round_number or 0),
        'standings': [p.to_dict() for p in standings],
    })


@games.route('/<string:game_code>/next', methods=['POST'])
@login_required
def next_round(game_code):
    game = _get_game(game_code)
    if not is_authorized(current_user.id, game):
        return _denied('Only the host may start the next round')
    if game.state != 'RESULTS':
        return _wrong_state(game, 'RESULTS')
    flow.next_round(game)
    return jsonify(game.to_dict())


@games.route('/<string:game_code>/leave', methods=['POST'])
@login_required
def leave_game(game_code):
    game = _get_game(game_code)
    player = _seated_player(game)
    if player is None:
        return _denied('You are not a player in this game')
    ended = flow.remove_player(game, player)
    logout_user()
    return jsonify({'left': True, 'game_ended': ended})


@games.route('/<string:game_code>/end', methods=['POST'])
@login_required
def end_game(game_code):
    game = _get_game(game_code)
    if not is_authorized(current_user.id, game):
        return _denied('Only the host may end the game')
    flow.end_session(game.game_code)
    logout_user()
    return jsonify({'ended': True})
