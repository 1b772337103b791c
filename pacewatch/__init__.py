"""PaceWatch — live speedrun pace ranking for a viewing dashboard."""
