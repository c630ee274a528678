from typing import Optional


def is_host(player_id: Optional[str], game) -> bool:
    return bool(player_id) and player_id == game.host_id


def is_authorized(player_id: Optional[str], game) -> bool:
    """May this player drive the session forward?

    The host always may; so may whoever is the only participant left, so a
    session is never stuck waiting on a host who is gone.
    """
    if not player_id:
        return False
    if is_host(player_id, game):
        return True
    player_ids = [p.id for p in game.players]
    return player_ids == [player_id]
