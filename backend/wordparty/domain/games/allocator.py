"""Word-position allocation.

Positions `0..total-1` are split into contiguous runs, one per player in
participant order. Every player gets `total // n` positions and the first
`total % n` players get one extra, so sizes differ by at most one.
"""

from __future__ import annotations

from typing import Dict, List, Sequence


def partition_positions(total_positions: int, num_players: int) -> List[List[int]]:
	if num_players < 1:
		raise ValueError("num_players must be at least 1")
	if total_positions < 0:
		raise ValueError("total_positions must not be negative")
	base, extra = divmod(total_positions, num_players)
	allocations: List[List[int]] = []
	start = 0
	for index in range(num_players):
		size = base + (1 if index < extra else 0)
		allocations.append(list(range(start, start + size)))
		start += size
	return allocations


def allocate_positions(total_positions: int, participants: Sequence[str]) -> Dict[str, List[int]]:
	"""Map each user id (in the given order) to its run of positions."""
	runs = partition_positions(total_positions, len(participants))
	return {user_id: run for user_id, run in zip(participants, runs)}
