"""Poll lifecycle: results, targets, the poll loop and its controller."""
