"""Consensus mock: slot clock, slot loop and the pre-merge prologue."""

from .clock import SlotClock
from .driver import ConsensusMock, PendingProposal
from .prologue import proof_of_work_prologue
from .reorg import calc_reorg_target
from .tasks import TaskSupervisor

__all__ = [
    "SlotClock",
    "ConsensusMock",
    "PendingProposal",
    "proof_of_work_prologue",
    "calc_reorg_target",
    "TaskSupervisor",
]
