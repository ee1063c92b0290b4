"""homeplan - conversational home renovation planner."""

__version__ = "0.1.0"
