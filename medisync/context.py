from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ProfileContext:
    """Who a request acts for: the account and the family profile selected in the UI.

    Passed explicitly to every store call that reads or creates reports.
    """

    user_id: str
    profile_id: Optional[str] = None
