"""Mean-rank consensus over the evaluators' parsed rankings."""

import logging
from collections.abc import Sequence

from council.models import AggregateRank, Stage2Result
from council.ranking import LabelMap

logger = logging.getLogger(__name__)


def calculate_aggregate_rankings(
    stage2: Sequence[Stage2Result],
    label_map: LabelMap,
) -> list[AggregateRank]:
    """Average each agent's 1-based position over the raters that ranked it.

    Raters that did not mention a label do not count towards its average.
    Agents nobody ranked are left out. Ties keep label order.
    """
    rank_sums: dict[str, float] = {}
    rank_counts: dict[str, int] = {}

    for rater in stage2:
        for position, label in enumerate(rater.parsed_ranking, start=1):
            agent = label_map.agent_for(label)
            if agent is None:
                logger.debug("Rater %s used unknown label %r", rater.agent, label)
                continue
            rank_sums[agent] = rank_sums.get(agent, 0.0) + position
            rank_counts[agent] = rank_counts.get(agent, 0) + 1

    aggregates = [
        AggregateRank(
            agent=agent,
            average_rank=rank_sums[agent] / rank_counts[agent],
            rankings_count=rank_counts[agent],
        )
        for agent in label_map.agents
        if rank_counts.get(agent)
    ]
    # sorted() is stable, so equal averages keep label (Stage 1) order
    return sorted(aggregates, key=lambda a: a.average_rank)
