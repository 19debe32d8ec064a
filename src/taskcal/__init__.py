"""taskcal - calendar synchronization for task management."""

__version__ = "0.1.0"
