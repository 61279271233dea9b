"""splitplus — shared-expense ledger service (Flask app in splitplus.app)."""
