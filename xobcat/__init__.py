"""XOB CAT — chatbot session analytics and the Auto-Analyze engine."""

__version__ = "0.4.0"
