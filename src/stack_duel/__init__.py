"""stack_duel: falling-block versus rules engine and heuristic placement bot."""
