"""
Validated input structs, one per operation.

Every field and range check runs here, before any service touches storage.
"""

from dataclasses import dataclass
from typing import Any, Mapping

from scoreboard.config import Config
from scoreboard.utils.leaderboard_exceptions import InvalidInputError

MAX_NAME_LENGTH = 100


def _require_text(payload: Mapping[str, Any], *keys: str) -> str:
    """Return the first present key as a trimmed, non-empty string."""
    for key in keys:
        if key in payload and payload[key] is not None:
            value = payload[key]
            break
    else:
        raise InvalidInputError(keys[0], "field is required")

    if not isinstance(value, str):
        raise InvalidInputError(keys[0], "must be a string")
    value = value.strip()
    if not value:
        raise InvalidInputError(keys[0], "must not be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise InvalidInputError(keys[0], f"must be at most {MAX_NAME_LENGTH} characters")
    return value


def validate_player_id(player_id: Any) -> str:
    return _require_text({'player_id': player_id}, 'player_id')


@dataclass(frozen=True)
class SubmitScoreRequest:
    player_id: str
    display_name: str
    score: int
    secret: str

    @classmethod
    def from_payload(cls, payload: Any, score_max: int = None) -> "SubmitScoreRequest":
        """Build a request from a decoded JSON body. Accepts "uid"/"name" aliases."""
        if score_max is None:
            score_max = Config.SCORE_MAX
        if not isinstance(payload, Mapping):
            raise InvalidInputError("body", "must be a JSON object")

        player_id = _require_text(payload, 'player_id', 'uid')
        display_name = _require_text(payload, 'display_name', 'name')

        score = payload.get('score')
        # bool is an int subclass; True is not a score
        if isinstance(score, bool) or not isinstance(score, int):
            raise InvalidInputError("score", "must be an integer")
        if score < 0 or score > score_max:
            raise InvalidInputError("score", f"must be between 0 and {score_max}")

        secret = payload.get('secret')
        if not isinstance(secret, str) or not secret:
            raise InvalidInputError("secret", "field is required")

        return cls(player_id=player_id, display_name=display_name, score=score, secret=secret)


@dataclass(frozen=True)
class LeaderboardQuery:
    limit: int

    @classmethod
    def from_params(cls, params: Mapping[str, str], default: int = None, maximum: int = None) -> "LeaderboardQuery":
        default = Config.LEADERBOARD_SIZE if default is None else default
        maximum = Config.LEADERBOARD_SIZE if maximum is None else maximum

        raw = params.get('limit')
        if raw is None or raw == '':
            return cls(limit=default)
        try:
            limit = int(raw)
        except (TypeError, ValueError):
            raise InvalidInputError("limit", "must be an integer")
        if limit < 1 or limit > maximum:
            raise InvalidInputError("limit", f"must be between 1 and {maximum}")
        return cls(limit=limit)
