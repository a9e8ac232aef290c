# ========================================================
# services/__init__.py
# ========================================================
"""
Raffle engine services.

Reusable modules, decoupled from the HTTP routes:

- ledger.py: chain lookup and payment verification
- quiz.py: weekly quiz gate, one attempt per user per week
- tickets.py: ticket minting and the per-user eligibility snapshot
- raffle.py: weekly lifecycle (sweep, winner draw, next raffle, stats)
- payout.py: prize transfer through an injected sender
- views.py: row → JSON-ready dict conversion
"""
