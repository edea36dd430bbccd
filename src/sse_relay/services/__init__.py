"""Connection fan-out: queues, subscription bridges and the stream manager."""
