from flask_socketio import join_room, leave_room, emit
from flask_login import current_user
from adedanha import socketio, db
from flask import current_app, request
from adedanha.models import Game, Player
from adedanha.services.games import flow
from typing import Dict, Any
import time


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_disconnect(*args):
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx and ctx.get('player_id'):
        _presence_lost(ctx['game_code'], ctx['player_id'])


def handle_join_game(data):
    game_code = (data or {}).get('game_code')
    if not game_code or not isinstance(game_code, str):
        emit('error', {'message': 'game_code is required'})
        return
    game_code = game_code.upper()
    room = f"game:{game_code}"
    join_room(room)
    # Presence is tied to the logged in seat, never to an id sent by the client
    player = current_user._get_current_object() if current_user.is_authenticated else None
    if player is not None and not (player.game and player.game.game_code == game_code):
        player = None
    _sid_to_ctx[_get_sid()] = {'game_code': game_code, 'player_id': player.id if player else None}
    if player is not None:
        _cancel_scheduled_end(game_code)
        if not player.online:
            _set_presence(player.id, True)
            flow.broadcast_state(game_code)
    emit('joined', {'room': room, 'player_id': player.id if player else None})


def handle_leave_game(data):
    game_code = (data or {}).get('game_code')
    if not game_code or not isinstance(game_code, str):
        emit('error', {'message': 'game_code is required'})
        return
    game_code = game_code.upper()
    room = f"game:{game_code}"
    leave_room(room)
    emit('left', {'room': room})
    ctx = _sid_to_ctx.pop(_get_sid(), None)
    if ctx and ctx.get('player_id') and ctx.get('game_code') == game_code:
        _presence_lost(game_code, ctx['player_id'])


def handle_ping(data):
    emit('pong', data or {})

# ---- Presence helpers ----

_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_end_deadline: Dict[str, float] = {}

def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore

def _set_presence(player_id: str, online: bool) -> None:
    player = Player.query.filter_by(id=player_id).first()
    if not player:
        return
    player.online = online
    db.session.add(player)
    db.session.commit()
    current_app.logger.info(f"[presence] player={player_id} online={online}")

def _presence_lost(game_code: str, player_id: str) -> None:
    # A player whose socket goes away is offline; once nobody in the game is
    # online the session is ended after a grace period
    _set_presence(player_id, False)
    game = Game.query.filter_by(game_code=game_code).first()
    if not game:
        return
    if game.online_player_ids():
        # An offline player no longer holds up the round
        if not flow.catch_up(game):
            flow.broadcast_state(game_code)
        return
    if current_app.config.get('TESTING'):
        # In tests, end immediately for determinism; in prod, allow grace period
        flow.end_session(game_code)
        return
    _schedule_end_if_abandoned(current_app._get_current_object(), game_code)

def _schedule_end_if_abandoned(app, game_code: str) -> None:
    delay_sec = float(app.config.get('ABANDON_GRACE_SEC', 30))
    if delay_sec <= 0:
        return
    _end_deadline[game_code] = time.time() + delay_sec

    def _runner(code: str, deadline: float):
        sleep_for = max(0.0, deadline - time.time())
        if sleep_for:
            socketio.sleep(sleep_for)
        if _end_deadline.get(code) != deadline:
            return
        with app.app_context():
            game = Game.query.filter_by(game_code=code).first()
            if game and not game.online_player_ids():
                app.logger.info(f"[abandoned] game={code} nobody online for {delay_sec}s")
                flow.end_session(code)
        _end_deadline.pop(code, None)

    socketio.start_background_task(_runner, game_code, _end_deadline[game_code])

def _cancel_scheduled_end(game_code: str) -> None:
    _end_deadline.pop(game_code, None)



def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    # Primary namespace
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('disconnect', handle_disconnect, namespace='/ws')
    socketio.on_event('join_game', handle_join_game, namespace='/ws')
    socketio.on_event('leave_game', handle_leave_game, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('disconnect', handle_disconnect, namespace='/')
        socketio.on_event('join_game', handle_join_game, namespace='/')
        socketio.on_event('leave_game', handle_leave_game, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
