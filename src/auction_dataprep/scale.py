"""Dataset sizing derived from scale level or user count."""

import math

from auction_dataprep.types import ScaleTarget

MIN_AUCTIONS = 4


def auctions_for(
    users: int,
    explicit_auctions: int | None,
    users_per_auction: float,
    min_auctions: int = MIN_AUCTIONS,
    apply_floor: bool = True,
) -> int:
    """Number of auctions to prepare for a run.

    An explicit non-zero auction count always wins. Otherwise the count is
    ceil(users / users_per_auction). The min_auctions floor applies only when
    apply_floor is set: the preparation path floors, the readiness check does
    not, so both can see different counts for the same users.
    """
    if explicit_auctions:
        return explicit_auctions
    auctions = math.ceil(users / users_per_auction)
    if apply_floor and auctions < min_auctions:
        return min_auctions
    return auctions


def sizing_args(target: ScaleTarget, loading: bool = False) -> list[str]:
    """Loader/verifier flags selecting the dataset size.

    A non-negative scale yields ``-s <scale>`` and ignores users entirely.
    Otherwise ``-u`` carries the user count, or the effective max users when
    loading so a dataset is sized for the largest run it must serve.
    """
    if target.uses_scale:
        return ["-s", str(target.scale)]
    users = target.effective_max_users if loading else target.users
    return ["-u", str(users)]
