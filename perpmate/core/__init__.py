"""Funding pipeline core: chains, models, oracle, monitor, bridge orchestration and withdrawals."""
