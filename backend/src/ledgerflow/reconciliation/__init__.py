"""Invoice reconciliation: candidate scoring, suggestions and linking."""
