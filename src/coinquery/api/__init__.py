"""HTTP boundary for the analysis pipeline."""
