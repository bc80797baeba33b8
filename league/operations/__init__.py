"""
Operations Layer

Business workflows that compose ledger writes with leaderboard cache
invalidation:

- Database layer: pure ledger access
- Operations layer: validation, settlement and multi-step transactions
- Services layer: aggregation, ranking and caching of the standings

Each operations module focuses on a specific domain:
- MatchOperations: match creation and result recording (also edits)
- LeagueOperations: membership, soft penalty opt-in, manual adjustments
"""
