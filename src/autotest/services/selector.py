from __future__ import annotations
from typing import Iterable, List

from ..core.db import TestScript
from ..core.models import TriggerKind


def select_scripts(scripts: Iterable[TestScript], trigger: TriggerKind) -> List[TestScript]:
    """Scripts to run for ``trigger``, in running order.

    Collection runs everything; submission and request runs only take the
    scripts flagged for them. ``sorted`` is stable, so scripts sharing a
    ``seq_num`` keep the order they were given in.
    """
    trigger = TriggerKind(trigger)
    if trigger is TriggerKind.COLLECTION:
        chosen = list(scripts)
    elif trigger is TriggerKind.SUBMISSION:
        chosen = [s for s in scripts if s.run_on_submission]
    else:
        chosen = [s for s in scripts if s.run_on_request]
    return sorted(chosen, key=lambda s: s.seq_num)
