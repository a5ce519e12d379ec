"""
Transition variants.

A status change is either a plain label change (``SimpleTransition``) or one
that settles money and stock (``SettlingTransition``). The order service
dispatches on the variant instead of branching on status strings.
"""
from dataclasses import dataclass

from app.state_machine.states import OrderStatus, TERMINAL_NEGATIVE_STATUSES


@dataclass(frozen=True)
class SimpleTransition:
    """Label change plus its timestamp"""

    source: OrderStatus
    target: OrderStatus


@dataclass(frozen=True)
class SettlingTransition:
    """Transition with ledger side effects.

    ``deduct_inventory`` and ``accrue_commission`` are set on entering
    ``delivered``. Entering returned/cancelled settles nothing by itself;
    stock comes back only through a verified return.
    """

    source: OrderStatus
    target: OrderStatus
    deduct_inventory: bool = False
    accrue_commission: bool = False
    terminal_negative: bool = False


Transition = SimpleTransition | SettlingTransition


def classify_transition(source: OrderStatus, target: OrderStatus) -> Transition:
    """Pick the variant for an already-validated (source, target) pair."""
    if target == OrderStatus.DELIVERED:
        return SettlingTransition(
            source=source,
            target=target,
            deduct_inventory=True,
            accrue_commission=True,
        )
    if target in TERMINAL_NEGATIVE_STATUSES:
        return SettlingTransition(source=source, target=target, terminal_negative=True)
    return SimpleTransition(source=source, target=target)
