from matchmaker.models.profile import Profile
from matchmaker.models.match import Match, make_pair_key

__all__ = ["Profile", "Match", "make_pair_key"]
