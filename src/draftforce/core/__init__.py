"""Domain core: engine state machine and its delegates."""
