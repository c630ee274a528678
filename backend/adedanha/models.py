from adedanha import db
from adedanha.services.games.catalog import category_name
from adedanha.services.games.scoring import RoundSnapshot
from flask_login import UserMixin
from collections import defaultdict
import json
import string
import random
import time

# LOBBY -> CATEGORIES -> GAME -> VALIDATION -> RESULTS -> CATEGORIES ...
GAME_STATES = ('LOBBY', 'CATEGORIES', 'GAME', 'VALIDATION', 'RESULTS')

PLAYER_ID_ALPHABET = string.ascii_letters + string.digits + '_-'


def generate_player_id(length=21):
    return ''.join(random.choices(PLAYER_ID_ALPHABET, k=length))


class Player(UserMixin, db.Model):
    __tablename__ = 'player'
    id = db.Column(db.String(21), primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False)
    total_score = db.Column(db.Integer, default=0, nullable=False)
    online = db.Column(db.Boolean, default=True, nullable=False)
    joined_at = db.Column(db.Float, default=time.time, nullable=False)
    game = db.relationship('Game', back_populates='players')

    def __init__(self, **kwargs):
        super(Player, self).__init__(**kwargs)
        if not self.id:
            self.id = generate_player_id()
        if self.total_score is None:
            self.total_score = 0
        if self.online is None:
            self.online = True
        if self.joined_at is None:
            self.joined_at = time.time()

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'game_id': self.game_id,
            'total_score': self.total_score,
            'online': self.online,
        }


def generate_game_code(length=6):
    """Generate a unique, short game code."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not Game.query.filter_by(game_code=code).first():
            return code


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    game_code = db.Column(db.String(6), unique=True, index=True)
    host_id = db.Column(db.String(21), nullable=True)
    state = db.Column(db.String(16), default='LOBBY', nullable=False)
    players = db.relationship('Player', back_populates='game', order_by='Player.joined_at',
                              cascade='all, delete-orphan')
    categories = db.Column(db.Text, nullable=True)  # JSON-encoded list of category ids
    used_letters = db.Column(db.Text, nullable=True)  # JSON-encoded list of letters
    current_letter = db.Column(db.String(1), nullable=True)
    round_number = db.Column(db.Integer, default=0, nullable=False)
    round_winner_id = db.Column(db.String(21), nullable=True)
    last_scored_round = db.Column(db.Integer, default=0, nullable=False)
    round_history = db.Column(db.Text, nullable=True)  # JSON-encoded list of round summaries
    created_at = db.Column(db.Float, default=time.time, nullable=False)

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if not self.game_code:
            self.game_code = generate_game_code()
        if self.state is None:
            self.state = 'LOBBY'
        if self.round_number is None:
            self.round_number = 0
        if self.last_scored_round is None:
            self.last_scored_round = 0

    @property
    def category_ids(self):
        return json.loads(self.categories) if self.categories else []

    @property
    def letters_used(self):
        return json.loads(self.used_letters) if self.used_letters else []

    @property
    def history(self):
        try:
            return json.loads(self.round_history) if self.round_history else []
        except ValueError:
            return []

    def online_player_ids(self):
        return [p.id for p in self.players if p.online]

    def current_submissions(self):
        return Submission.query.filter_by(game_id=self.id, round_number=self.round_number).all()

    def answer_set(self):
        return {s.player_id: s.answer_map() for s in self.current_submissions()}

    def vote_set(self):
        votes = defaultdict(set)
        for v in Vote.query.filter_by(game_id=self.id, round_number=self.round_number).all():
            votes[(v.target_player_id, v.category_id)].add(v.voter_id)
        return dict(votes)

    def snapshot(self) -> RoundSnapshot:
        return RoundSnapshot(
            registry={p.id: p.total_score for p in self.players},
            online=frozenset(self.online_player_ids()),
            categories=tuple(self.category_ids),
            letter=self.current_letter or '',
            answers=self.answer_set(),
            votes=self.vote_set(),
            round_number=int(self.round_number or 0),
        )

    def to_dict(self):
        submissions = self.current_submissions() if self.round_number else []
        submitted = {s.player_id for s in submissions}
        players_serialized = []
        for p in self.players:
            pd = p.to_dict()
            pd['has_answered'] = p.id in submitted
            players_serialized.append(pd)

        # Answers stay hidden while the round is being played
        answers = None
        votes = None
        if self.state in ('VALIDATION', 'RESULTS'):
            answers = {s.player_id: s.answer_map() for s in submissions}
            votes = [
                {'player_id': pid, 'category_id': cid, 'voters': sorted(voters)}
                for (pid, cid), voters in sorted(self.vote_set().items())
            ]

        return {
            'id': self.id,
            'game_code': self.game_code,
            'host_id': self.host_id,
            'state': self.state,
            'players': players_serialized,
            'categories': [{'id': cid, 'name': category_name(cid)} for cid in self.category_ids],
            'used_letters': self.letters_used,
            'current_letter': self.current_letter,
            'round_number': self.round_number,
            'round_winner': self.round_winner_id,
            'answers': answers,
            'votes': votes,
            'round_history': self.history,
        }


class Submission(db.Model):
    __tablename__ = 'submission'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    # Not a foreign key: answers outlive a player who leaves mid-round
    player_id = db.Column(db.String(21), nullable=False)
    player_name = db.Column(db.String(64), nullable=True)
    answers = db.Column(db.Text, nullable=False, default='{}')  # JSON-encoded {category id: text}
    submitted_at = db.Column(db.Float, default=time.time, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('game_id', 'round_number', 'player_id', name='uq_submission_round_player'),
    )

    def answer_map(self):
        try:
            raw = json.loads(self.answers) if self.answers else {}
        except ValueError:
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}


class Vote(db.Model):
    __tablename__ = 'vote'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    target_player_id = db.Column(db.String(21), nullable=False)
    category_id = db.Column(db.String(64), nullable=False)
    voter_id = db.Column(db.String(21), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('game_id', 'round_number', 'target_player_id', 'category_id', 'voter_id',
                            name='uq_vote_once'),
    )
