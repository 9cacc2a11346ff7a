"""Consumer-side building blocks: models, allocation strategies, offset stores, process queues, statistics and options."""

__version__ = "0.1.0"

__all__ = ["models", "strategy", "statistics", "offset_store", "process_queue", "options"]