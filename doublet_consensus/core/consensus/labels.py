"""Label and decision vocabulary shared by the aggregator and resolver."""

from enum import Enum


class DoubletLabel(str, Enum):
    """Final three-state cell label."""

    SINGLET = "singlet"
    DOUBLET = "doublet"
    UNCLASSIFIED = "unclassified"

    def __str__(self) -> str:
        return self.value


# Resolver branch that produced a cell's label
DECISION_NOT_JOINED = "not_joined"
DECISION_CLUSTER = "cluster"
DECISION_CELL_VOTE = "cell_vote"
DECISION_BELOW_THRESHOLD = "below_threshold"
