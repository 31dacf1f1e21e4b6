from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from .users import UserStatsRepo, referral_code_for
from .positions import PositionRepo
from .pools import DailyPoolRepo
from .distributions import DistributionRepo
from .referrals import ReferralRepo
from .swaps import SwapRepo
from .tokens import TokenRepo
from .cursor import CursorRepo
from .manager import LedgerStore

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "UserStatsRepo",
    "referral_code_for",
    "PositionRepo",
    "DailyPoolRepo",
    "DistributionRepo",
    "ReferralRepo",
    "SwapRepo",
    "TokenRepo",
    "CursorRepo",
    "LedgerStore",
]
