"""Training Center: timed quizzes, scoring and AI-assisted daily evaluations."""

__version__ = "0.1.0"
